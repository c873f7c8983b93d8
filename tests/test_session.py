"""Tests for per-iteration session state and id harvesting."""

from storefront_load.session import PRODUCT_ID_PATTERN, Session, extract_ids, harvest_ids


class TestExtractIds:
    def test_duplicates_collapse_in_first_seen_order(self):
        body = "see ID-0001 then ID-0002 and ID-0001 again"
        assert extract_ids(body, r"ID-\d{4}") == ["ID-0001", "ID-0002"]

    def test_capture_group_is_the_id(self):
        body = '<a href="/product/OLJCESPC7Z">x</a><a href="/product/66VCHSJNUP">y</a>'
        assert extract_ids(body, PRODUCT_ID_PATTERN) == ["OLJCESPC7Z", "66VCHSJNUP"]

    def test_no_match(self):
        assert extract_ids("<html></html>") == []
        assert extract_ids("") == []


class TestSession:
    def test_add_ids_only_grows(self):
        session = Session()
        assert session.add_ids(["A", "B"]) == ["A", "B"]
        assert session.add_ids(["B", "C", "A"]) == ["C"]
        assert session.discovered_ids == ["A", "B", "C"]

    def test_cookies_are_per_host(self):
        session = Session()
        session.store_cookies("default", {"sid": "1"})
        session.store_cookies("other", {"sid": "2"})
        session.store_cookies("default", {})
        assert session.cookies_for("default") == {"sid": "1"}
        assert session.cookies_for("other") == {"sid": "2"}
        assert session.cookies_for("unknown") == {}

    def test_cookies_for_returns_a_copy(self):
        session = Session()
        session.store_cookies("default", {"sid": "1"})
        session.cookies_for("default")["sid"] = "changed"
        assert session.cookies_for("default") == {"sid": "1"}

    def test_sessions_do_not_share_state(self):
        a, b = Session(), Session()
        a.add_ids(["X"])
        a.vars["product_id"] = "X"
        assert b.discovered_ids == []
        assert b.vars == {}
        assert a.session_id != b.session_id


class TestHarvest:
    def test_found_ids_are_recorded(self):
        session = Session()
        found = harvest_ids(session, "ID-0001 ID-0002 ID-0001", ["FALLBACK"], r"ID-\d{4}")
        assert found == ["ID-0001", "ID-0002"]
        assert session.discovered_ids == ["ID-0001", "ID-0002"]

    def test_zero_matches_falls_back_to_static_list(self):
        session = Session()
        harvest_ids(session, "<html>maintenance</html>", ["P1", "P2"])
        assert session.discovered_ids == ["P1", "P2"]

    def test_fallback_is_not_duplicated_on_second_harvest(self):
        session = Session()
        harvest_ids(session, "", ["P1", "P2"])
        harvest_ids(session, "", ["P1", "P2"])
        assert session.discovered_ids == ["P1", "P2"]
