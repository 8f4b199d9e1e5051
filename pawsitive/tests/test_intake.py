"""Tests for the scan intake workflow."""

import sqlite3
from unittest.mock import MagicMock, patch

import pytest
import requests

from pawsitive import db
from pawsitive.errors import ExternalSearchFailed, InvalidPayload, LookupFailed
from pawsitive.intake import intake, validate_payload
from pawsitive.models import RecognizedProduct, ScanPayload
from pawsitive.scoring import analyze_product
from pawsitive.search import ProductSearchClient


def _history(db_path, user_id):
    return db.get_user_scan_history(db_path, user_id)


INTERNET_CANDIDATE = {
    "name": "Ocean Whitefish Pate",
    "brand": "Purrfect",
    "category": "cat-food",
    "ingredients": "Whitefish, fish broth, liver, guar gum, BHA, taurine, vitamin E supplement",
    "image_url": None,
    "barcode": "012345678905",
    "source_url": "https://world.openpetfoodfacts.org/product/012345678905",
}


class TestValidatePayload:
    """Tests for payload validation (no I/O)."""

    @pytest.mark.parametrize("value", ["", "   ", "12 34", "abc$", "9" * 65])
    def test_bad_barcodes_rejected(self, value):
        with pytest.raises(InvalidPayload):
            validate_payload(ScanPayload("barcode", value))

    def test_barcode_is_stripped(self):
        assert validate_payload(ScanPayload("barcode", " 012345678905 ")) == ("012345678905", None)

    def test_unknown_kind_rejected(self):
        with pytest.raises(InvalidPayload):
            validate_payload(ScanPayload("qr", "123"))

    def test_garbage_image_rejected(self):
        with pytest.raises(InvalidPayload):
            validate_payload(ScanPayload("image", "bm90IGFuIGltYWdl"))

    def test_valid_image_accepted(self, png_base64):
        _, image = validate_payload(ScanPayload("image", f"data:image/png;base64,{png_base64}"))
        assert image.mime_type == "image/png"


class TestBarcodeIntake:
    """Tests for barcode scans."""

    def test_empty_barcode_writes_no_history(self, db_path, user_id, mock_searcher):
        with pytest.raises(InvalidPayload):
            intake(ScanPayload("barcode", ""), user_id, db_path, searcher=mock_searcher)

        assert _history(db_path, user_id) == []
        mock_searcher.search.assert_not_called()

    def test_internet_candidate_writes_one_record(self, db_path, user_id, blacklist, mock_searcher):
        mock_searcher.search.return_value = dict(INTERNET_CANDIDATE)

        result = intake(ScanPayload("barcode", "012345678905"), user_id, db_path, searcher=mock_searcher)

        assert result.status == "internet"
        assert result.source == "internet"
        assert result.analysis["suspicious_ingredients"] == ["BHA"]
        assert result.product["name"] == "Ocean Whitefish Pate"
        mock_searcher.search.assert_called_once_with("barcode", "012345678905")

        history = _history(db_path, user_id)
        assert len(history) == 1
        assert history[0]["scanned_data"] == "012345678905"
        assert history[0]["id"] == result.scan_id
        assert history[0]["product_id"] is None
        # Candidates are not stored until the user accepts them
        assert db.get_products(db_path) == []

    def test_local_product_skips_search(self, db_path, user_id, make_product, mock_searcher):
        product = make_product(barcode="5000000000017", baseline_score=90)

        result = intake(ScanPayload("barcode", "5000000000017"), user_id, db_path, searcher=mock_searcher)

        assert result.status == "found"
        assert result.source == "local"
        assert result.product["id"] == product["id"]
        mock_searcher.search.assert_not_called()
        history = _history(db_path, user_id)
        assert len(history) == 1
        assert history[0]["product_id"] == product["id"]

    def test_stale_product_is_reanalyzed(self, db_path, user_id, make_product, mock_searcher):
        make_product(barcode="5000000000017", baseline_score=90)

        result = intake(ScanPayload("barcode", "5000000000017"), user_id, db_path, searcher=mock_searcher)

        assert result.reanalyzed
        assert result.analysis["cosmic_score"] == 90
        assert db.get_product_by_barcode(db_path, "5000000000017")["last_analyzed"] is not None

    def test_fresh_product_keeps_stored_analysis(self, db_path, user_id, make_product, mock_searcher):
        product = make_product(barcode="5000000000017")
        db.update_product_analysis(db_path, product["id"], {
            "cosmic_score": 72, "cosmic_clarity": "questionable",
            "transparency_level": "excellent", "suspicious_ingredients": [],
        })
        db.set_clarity_override(db_path, product["id"], "blessed")

        result = intake(ScanPayload("barcode", "5000000000017"), user_id, db_path, searcher=mock_searcher)

        assert not result.reanalyzed
        assert result.analysis["cosmic_score"] == 72
        assert result.analysis["cosmic_clarity"] == "blessed"

    def test_not_found_still_recorded(self, db_path, user_id, mock_searcher):
        result = intake(ScanPayload("barcode", "404"), user_id, db_path, searcher=mock_searcher)

        assert result.status == "not_found"
        assert result.message == "Product not found."
        history = _history(db_path, user_id)
        assert len(history) == 1
        assert history[0]["analysis_result"]["status"] == "not_found"

    def test_search_failure_degrades_to_not_found(self, db_path, user_id, mock_searcher):
        mock_searcher.search.side_effect = ExternalSearchFailed("timeout")

        result = intake(ScanPayload("barcode", "012345678905"), user_id, db_path, searcher=mock_searcher)

        assert result.status == "not_found"
        assert len(_history(db_path, user_id)) == 1

    def test_unexpected_search_error_degrades_to_not_found(self, db_path, user_id, mock_searcher):
        mock_searcher.search.side_effect = requests.ConnectionError("connection reset")

        result = intake(ScanPayload("barcode", "012345678905"), user_id, db_path, searcher=mock_searcher)

        assert result.status == "not_found"
        history = _history(db_path, user_id)
        assert len(history) == 1
        assert history[0]["analysis_result"]["status"] == "not_found"

    def test_scoring_error_degrades_to_not_found(self, db_path, user_id, mock_searcher):
        mock_searcher.search.return_value = dict(INTERNET_CANDIDATE)

        with patch("pawsitive.intake.analyze_candidate", side_effect=TypeError("bad candidate")):
            result = intake(ScanPayload("barcode", "012345678905"), user_id, db_path, searcher=mock_searcher)

        assert result.status == "not_found"
        assert len(_history(db_path, user_id)) == 1

    @pytest.mark.parametrize("record, status", [
        ({"product_name": "Trail Mix Kibble", "categories_tags": ["en:dog-food", 5]}, "internet"),
        (["not", "a", "record"], "not_found"),
    ])
    def test_odd_search_records_still_recorded(self, db_path, user_id, record, status):
        resp = MagicMock(status_code=200)
        resp.json.return_value = {"status": 1, "product": record}
        session = MagicMock(spec=requests.Session)
        session.get.return_value = resp
        searcher = ProductSearchClient(base_url="https://pets.example", session=session, max_retries=0)

        result = intake(ScanPayload("barcode", "012345678905"), user_id, db_path, searcher=searcher)

        assert result.status == status
        assert len(_history(db_path, user_id)) == 1

    def test_baseline_change_triggers_reanalysis(self, db_path, user_id, make_product, mock_searcher):
        product = make_product(barcode="5000000000017", baseline_score=90)
        analyze_product(db_path, product["id"])
        db.update_product(db_path, product["id"], {"baseline_score": 20})

        result = intake(ScanPayload("barcode", "5000000000017"), user_id, db_path, searcher=mock_searcher)

        assert result.reanalyzed
        assert result.analysis["cosmic_score"] == 20
        assert result.analysis["cosmic_clarity"] == "cursed"


class TestLookupRetry:
    """Tests for store errors during local lookup."""

    def test_single_failure_is_retried(self, db_path, user_id, make_product, mock_searcher):
        make_product(barcode="5000000000017")
        real_lookup = db.get_product_by_barcode
        calls = []

        def flaky(path, barcode):
            calls.append(barcode)
            if len(calls) == 1:
                raise sqlite3.OperationalError("database is locked")
            return real_lookup(path, barcode)

        with patch("pawsitive.intake.db.get_product_by_barcode", side_effect=flaky):
            result = intake(ScanPayload("barcode", "5000000000017"), user_id, db_path, searcher=mock_searcher)

        assert result.status == "found"
        assert len(calls) == 2

    def test_second_failure_raises_lookup_failed(self, db_path, user_id, mock_searcher):
        with patch(
            "pawsitive.intake.db.get_product_by_barcode",
            side_effect=sqlite3.OperationalError("disk I/O error"),
        ) as lookup:
            with pytest.raises(LookupFailed) as exc_info:
                intake(ScanPayload("barcode", "5000000000017"), user_id, db_path, searcher=mock_searcher)

        assert lookup.call_count == 2
        assert exc_info.value.user_message == "Scan failed, try again."
        history = _history(db_path, user_id)
        assert len(history) == 1
        assert history[0]["analysis_result"]["status"] == "error"
        mock_searcher.search.assert_not_called()


class TestImageIntake:
    """Tests for photo scans."""

    def test_recognized_name_matches_local_product(
        self, db_path, user_id, make_product, png_base64, mock_searcher, mock_recognizer
    ):
        product = make_product(barcode=None)
        mock_recognizer.recognize.return_value = RecognizedProduct(name="SALMON FEAST", brand="happy paws")

        result = intake(
            ScanPayload("image", png_base64), user_id, db_path,
            searcher=mock_searcher, recognizer=mock_recognizer,
        )

        assert result.status == "found"
        assert result.product["id"] == product["id"]
        history = _history(db_path, user_id)
        assert history[0]["scanned_data"].startswith("image:image/png:")
        assert history[0]["scan_kind"] == "image"

    def test_recognized_name_searched_externally(
        self, db_path, user_id, png_base64, mock_searcher, mock_recognizer
    ):
        mock_recognizer.recognize.return_value = RecognizedProduct(name="Whitefish Pate", brand="Purrfect")
        mock_searcher.search.return_value = dict(INTERNET_CANDIDATE)

        result = intake(
            ScanPayload("image", png_base64), user_id, db_path,
            searcher=mock_searcher, recognizer=mock_recognizer,
        )

        assert result.source == "internet"
        mock_searcher.search.assert_called_once_with("name", "Purrfect Whitefish Pate")

    def test_unrecognized_photo_is_not_found(
        self, db_path, user_id, png_base64, mock_searcher, mock_recognizer
    ):
        result = intake(
            ScanPayload("image", png_base64), user_id, db_path,
            searcher=mock_searcher, recognizer=mock_recognizer,
        )

        assert result.status == "not_found"
        mock_searcher.search.assert_not_called()
        assert len(_history(db_path, user_id)) == 1

    def test_recognizer_exception_counts_as_no_candidate(
        self, db_path, user_id, png_base64, mock_searcher, mock_recognizer
    ):
        mock_recognizer.recognize.side_effect = RuntimeError("vision service down")

        result = intake(
            ScanPayload("image", png_base64), user_id, db_path,
            searcher=mock_searcher, recognizer=mock_recognizer,
        )

        assert result.status == "not_found"
