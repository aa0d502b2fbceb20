"""
User-facing chat text. Internal degraded states never appear here.
"""

from loyaltyguard.schemas.receipt import Decision, FraudResult
from loyaltyguard.schemas.semantic import ParsedReceipt

MENU = """Here's what you can do:

1️⃣ Upload a receipt
2️⃣ View purchase history
3️⃣ Check loyalty points & rewards
4️⃣ Contact support agent

Type *help* to see this again."""

UPLOAD_PROMPT = "Please upload your receipt image now 📸"
RECEIPT_RECEIVED = "📸 Receipt received! Processing your image now..."
STOPPED = "You have exited the chatbot. Type *help* to return anytime."
SUPPORT = "💬 A support agent will contact you shortly."
PROFILE_ERROR = "There was an error processing your profile. Please try again later."
PROCESSING_ERROR = (
    "❌ There was an error processing your receipt. "
    "Please try uploading again or contact support."
)
NOT_EXPECTING_IMAGE = "Type *1* first if you want to upload a receipt."


def outcome_message(fraud_result: FraudResult, parsed: ParsedReceipt) -> str:
    """The single outcome message sent after a batch has been scored."""
    store = parsed.store_name or "Receipt uploaded"
    currency = parsed.currency or ""
    amount = f"{currency} {parsed.total_amount or 'N/A'}".strip()

    if fraud_result.decision == Decision.REJECT:
        reasons = "\n".join(f"• {r}" for r in fraud_result.reasons[:3])
        return (
            "❌ *Receipt Rejected*\n\n"
            "This receipt has been flagged as high risk.\n\n"
            f"*Fraud Score:* {fraud_result.score}/100\n\n"
            f"*Reasons:*\n{reasons}\n\n"
            "Please upload a clear photo of an *original receipt*."
        )

    if fraud_result.decision == Decision.REVIEW:
        return (
            "🟡 *Receipt Submitted for Review*\n\n"
            f"Store: {store}\n"
            f"Amount: {amount}\n\n"
            "*Status:* Under manual review\n"
            f"*Risk Score:* {fraud_result.score}/100\n\n"
            "We'll verify and notify you within 24 hours."
        )

    return (
        "✅ *Receipt Accepted!*\n\n"
        f"Store: {store}\n"
        f"Amount: {amount}\n"
        f"Date: {parsed.purchase_date or 'N/A'}\n\n"
        f"*Risk Score:* {fraud_result.score}/100 ✓\n\n"
        "Thank you for submitting your receipt!"
    )
