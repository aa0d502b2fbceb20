"""
Tests for the HTTP collaborators (WordPress store/ledger, Twilio channel)
with a mocked requests session.

Running:
    python -m pytest tests/test_collaborators.py -v
"""

from unittest.mock import MagicMock

import pytest
import requests

from loyaltyguard.intake.media import MediaDownloadError, TwilioChannel
from loyaltyguard.repository.base import CampaignLedger, ReceiptStore
from loyaltyguard.repository.memory_store import InMemoryStore
from loyaltyguard.repository.wordpress import WordPressClient


def _response(payload=None, content=b"{}", error=None):
    response = MagicMock()
    response.json.return_value = payload or {}
    response.content = content
    if error is not None:
        response.raise_for_status.side_effect = error
    return response


@pytest.fixture
def session():
    return MagicMock()


class TestStoreContracts:

    @pytest.mark.parametrize("store_cls", [InMemoryStore, WordPressClient])
    def test_documented_implementations(self, store_cls):
        assert store_cls.__name__ in ReceiptStore.__doc__
        assert issubclass(store_cls, ReceiptStore)
        assert issubclass(store_cls, CampaignLedger)


class TestWordPressClient:

    def _client(self, session):
        return WordPressClient("https://shop.example/", "bot", "app-pass", session=session)

    def test_resolve_submitter(self, session):
        session.post.return_value = _response({"profileId": 42})
        assert self._client(session).resolve_submitter("+659", "Alex") == "42"
        url = session.post.call_args[0][0]
        assert url == "https://shop.example/wp-json/custom/v1/store-whatsapp-user"

    def test_create_submission_links_later_images(self, session):
        session.post.side_effect = [_response({"receipt_id": 900}), _response({"receipt_id": 900})]
        receipt_id = self._client(session).create_submission("42", [b"a", b"b"])
        assert receipt_id == "900"
        second_form = session.post.call_args_list[1][1]["data"]
        assert second_form["receipt_id"] == "900"

    def test_create_submission_without_id_raises(self, session):
        session.post.return_value = _response({})
        with pytest.raises(ValueError):
            self._client(session).create_submission("42", [b"a"])

    def test_redemption_counts(self, session):
        session.get.return_value = _response({"redemption_limit": "5", "redemption_count": 2})
        counts = self._client(session).get_redemption_count(11)
        assert counts.max == 5
        assert counts.count == 2

    def test_user_redemption_count_filters_campaign(self, session):
        session.get.return_value = _response({"entries": [
            {"campaign_id": 11}, {"campaign_id": "11"}, {"campaign_id": 12},
        ]})
        assert self._client(session).get_user_redemption_count(11, "42") == 2

    def test_http_errors_propagate(self, session):
        session.get.return_value = _response(error=requests.HTTPError("500"))
        with pytest.raises(requests.HTTPError):
            self._client(session).fetch_active_campaigns()


class TestTwilioChannel:

    def test_fetch_media(self, session):
        session.get.return_value = _response(content=b"jpeg-bytes")
        channel = TwilioChannel("AC123", "token", session=session)
        assert channel.fetch_media("https://api.twilio.com/media/1") == b"jpeg-bytes"
        assert session.auth == ("AC123", "token")

    def test_fetch_media_failure(self, session):
        session.get.side_effect = requests.ConnectionError("reset")
        with pytest.raises(MediaDownloadError):
            TwilioChannel("AC123", "token", session=session).fetch_media("https://x")

    def test_send_adds_whatsapp_prefix(self, session):
        session.post.return_value = _response()
        TwilioChannel("AC123", "token", sender="+14155238886", session=session).send("+659", "hello")
        form = session.post.call_args[1]["data"]
        assert form == {"From": "whatsapp:+14155238886", "To": "whatsapp:+659", "Body": "hello"}
        assert session.post.call_args[0][0].endswith("/Accounts/AC123/Messages.json")

    def test_send_without_sender_is_dropped(self, session):
        TwilioChannel("AC123", "token", session=session).send("+659", "hello")
        session.post.assert_not_called()
