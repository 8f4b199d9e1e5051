"""Tests for external product search and image recognition (no network)."""

import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from pawsitive.errors import ExternalSearchFailed
from pawsitive.search import ImageRecognizer, ProductSearchClient, normalize_candidate


def _response(status=200, payload=None):
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = payload
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    return resp


OFF_PRODUCT = {
    "code": "012345678905",
    "product_name": "Ocean Whitefish Pate",
    "brands": "Purrfect, Purrfect Foods Inc",
    "categories_tags": ["en:pet-food", "en:cat-food"],
    "ingredients_text_en": "Whitefish, fish broth, liver, guar gum",
    "image_front_url": "https://images.example/whitefish.jpg",
}


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def client(session):
    return ProductSearchClient(base_url="https://pets.example", session=session, max_retries=2)


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("pawsitive.search.time.sleep"):
        yield


class TestNormalize:

    def test_maps_fields(self):
        candidate = normalize_candidate(OFF_PRODUCT, "https://pets.example")
        assert candidate == {
            "name": "Ocean Whitefish Pate",
            "brand": "Purrfect",
            "category": "cat-food",
            "description": None,
            "ingredients": "Whitefish, fish broth, liver, guar gum",
            "image_url": "https://images.example/whitefish.jpg",
            "barcode": "012345678905",
            "source_url": "https://pets.example/product/012345678905",
        }

    def test_nameless_record_is_dropped(self):
        assert normalize_candidate({"code": "1", "product_name": "  "}) is None

    def test_non_string_category_tag_falls_back(self):
        raw = {"product_name": "X", "categories_tags": ["en:dog-food", 5]}
        assert normalize_candidate(raw)["category"] == "pet-food"


class TestProductSearchClient:

    def test_barcode_hit(self, client, session):
        session.get.return_value = _response(200, {"status": 1, "product": OFF_PRODUCT})

        candidate = client.search("barcode", "012345678905")

        assert candidate["name"] == "Ocean Whitefish Pate"
        url = session.get.call_args[0][0]
        assert url == "https://pets.example/api/v2/product/012345678905.json"

    def test_barcode_miss_on_404(self, client, session):
        session.get.return_value = _response(404, {"status": 0})
        assert client.search("barcode", "000") is None

    def test_barcode_miss_on_status_zero(self, client, session):
        session.get.return_value = _response(200, {"status": 0, "status_verbose": "product not found"})
        assert client.search("barcode", "000") is None

    def test_name_search_takes_first(self, client, session):
        session.get.return_value = _response(200, {"count": 2, "products": [OFF_PRODUCT, {"product_name": "Other"}]})

        candidate = client.search("name", "whitefish pate")

        assert candidate["barcode"] == "012345678905"
        params = session.get.call_args[1]["params"]
        assert params["search_terms"] == "whitefish pate"
        assert params["json"] == 1
        assert params["page_size"] == 1

    def test_retries_then_succeeds(self, client, session):
        session.get.side_effect = [
            _response(503),
            _response(200, {"status": 1, "product": OFF_PRODUCT}),
        ]
        assert client.search("barcode", "012345678905") is not None
        assert session.get.call_count == 2

    def test_exhausted_retries_raise(self, client, session):
        session.get.return_value = _response(429)
        with pytest.raises(ExternalSearchFailed):
            client.search("barcode", "012345678905")
        assert session.get.call_count == 3

    def test_network_error_raises(self, client, session):
        session.get.side_effect = requests.ConnectionError("no route to host")
        with pytest.raises(ExternalSearchFailed):
            client.search("name", "kibble")

    def test_bad_json_raises(self, client, session):
        resp = _response(200)
        resp.json.side_effect = ValueError("Expecting value")
        session.get.return_value = resp
        with pytest.raises(ExternalSearchFailed):
            client.search("barcode", "1")

    def test_malformed_record_raises_search_failed(self, client, session):
        session.get.return_value = _response(200, {"status": 1, "product": ["not", "a", "record"]})
        with pytest.raises(ExternalSearchFailed):
            client.search("barcode", "012345678905")

    def test_malformed_name_result_raises_search_failed(self, client, session):
        session.get.return_value = _response(200, {"products": [{"product_name": "X", "brands": 7}, "junk"]})
        assert client.search("name", "x")["brand"] == "Unknown"
        session.get.return_value = _response(200, {"products": ["junk"]})
        with pytest.raises(ExternalSearchFailed):
            client.search("name", "x")

    def test_blank_query_skips_request(self, client, session):
        assert client.search("name", "  ") is None
        session.get.assert_not_called()


class TestImageRecognizer:

    def _client(self, output_text=None, error=None):
        openai_client = MagicMock()
        if error:
            openai_client.responses.create.side_effect = error
        else:
            openai_client.responses.create.return_value = MagicMock(output_text=output_text)
        return openai_client

    def test_parses_json_reply(self):
        reply = json.dumps({"name": "Whitefish Pate", "brand": "Purrfect", "barcode": None})
        recognizer = ImageRecognizer(model="test-model", client=self._client(reply))

        result = recognizer.recognize("aGVsbG8=", "image/png")

        assert result.name == "Whitefish Pate"
        assert result.brand == "Purrfect"
        assert result.barcode is None
        call = recognizer.client.responses.create.call_args
        assert call.kwargs["model"] == "test-model"
        content = call.kwargs["input"][0]["content"]
        assert content[1]["image_url"] == "data:image/png;base64,aGVsbG8="

    def test_strips_code_fences(self):
        reply = '```json\n{"name": null, "brand": null, "barcode": "4011"}\n```'
        result = ImageRecognizer(client=self._client(reply)).recognize("aGVsbG8=")
        assert result.barcode == "4011"

    def test_nothing_readable_is_none(self):
        reply = json.dumps({"name": None, "brand": "Acme", "barcode": None})
        assert ImageRecognizer(client=self._client(reply)).recognize("aGVsbG8=") is None

    def test_api_error_is_none(self):
        recognizer = ImageRecognizer(client=self._client(error=RuntimeError("rate limited")))
        assert recognizer.recognize("aGVsbG8=") is None

    def test_unparseable_reply_is_none(self):
        assert ImageRecognizer(client=self._client("I see a bag of dog food")).recognize("aGVsbG8=") is None
