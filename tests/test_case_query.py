"""Unit tests for tenant-scoped case queries."""

from datetime import timedelta

from bson import ObjectId

from caseflow.app.models.domain.case import utcnow
from caseflow.app.models.domain.case_query import CaseQuery, StatusBucket, normalize_filter
from caseflow.app.models.domain.tenant import CallerContext
from caseflow.app.repositories.mongodb.case_repository import to_object_id

from fakes import FIRM_ID, LAWYER_ID, OTHER_FIRM_ID, OUTSIDER_ID, lawyer_caller, make_case


class TestMongoFilter:
    """Test suite for CaseQuery.to_mongo_filter."""

    def test_firm_caller_filter(self):
        """Firm members see firm cases or cases assigned to them."""
        query = CaseQuery(caller=lawyer_caller())
        conditions = query.to_mongo_filter()["$and"]

        assert {"deletedAt": None} in conditions
        assert {"$or": [{"firmId": FIRM_ID}, {"lawyerId": LAWYER_ID}]} in conditions

    def test_solo_lawyer_filter(self):
        """Solo lawyers are scoped by lawyer id only."""
        caller = CallerContext(user_id=LAWYER_ID, firm_id=FIRM_ID, is_solo_lawyer=True)
        conditions = CaseQuery(caller=caller).to_mongo_filter()["$and"]

        assert conditions == [{"deletedAt": None}, {"lawyerId": LAWYER_ID}]

    def test_caller_without_firm_filter(self):
        caller = CallerContext(user_id=LAWYER_ID)
        conditions = CaseQuery(caller=caller).to_mongo_filter()["$and"]
        assert {"lawyerId": LAWYER_ID} in conditions

    def test_ids_are_converted(self):
        conditions = CaseQuery(caller=lawyer_caller()).to_mongo_filter(id_converter=to_object_id)["$and"]
        tenant = conditions[1]["$or"]
        assert tenant[0]["firmId"] == ObjectId(FIRM_ID)
        assert tenant[1]["lawyerId"] == ObjectId(LAWYER_ID)

    def test_optional_filters(self):
        query = CaseQuery(caller=lawyer_caller(), category="labor", outcome="won", priority="high")
        conditions = query.to_mongo_filter()["$and"]
        assert {"category": "labor"} in conditions
        assert {"outcome": "won"} in conditions
        assert {"priority": "high"} in conditions

    def test_active_bucket(self):
        conditions = CaseQuery(caller=lawyer_caller(), status_bucket=StatusBucket.ACTIVE).to_mongo_filter()["$and"]
        assert {"status": {"$nin": ["closed", "completed", "archived"]}} in conditions
        assert {"outcome": {"$nin": ["won", "lost", "settled"]}} in conditions

    def test_closed_bucket(self):
        conditions = CaseQuery(caller=lawyer_caller(), status_bucket=StatusBucket.CLOSED).to_mongo_filter()["$and"]
        assert {
            "$or": [
                {"status": {"$in": ["closed", "completed"]}},
                {"outcome": {"$in": ["won", "lost", "settled"]}},
            ]
        } in conditions

    def test_created_range(self):
        start = utcnow() - timedelta(days=30)
        end = utcnow()
        query = CaseQuery(caller=lawyer_caller(), created_from=start, created_to=end)
        assert {"createdAt": {"$gte": start, "$lte": end}} in query.to_mongo_filter()["$and"]


class TestInMemoryMatching:
    """Test suite for CaseQuery.matches."""

    def test_tenant_scope(self):
        query = CaseQuery(caller=CallerContext(user_id=OUTSIDER_ID, firm_id=OTHER_FIRM_ID))
        assert not query.matches(make_case())
        assert query.matches(make_case(firm_id=OTHER_FIRM_ID))
        assert query.matches(make_case(lawyer_id=OUTSIDER_ID))

    def test_deleted_cases_never_match(self):
        assert not CaseQuery(caller=lawyer_caller()).matches(make_case(deleted_at=utcnow()))

    def test_status_buckets(self):
        active = CaseQuery(caller=lawyer_caller(), status_bucket=StatusBucket.ACTIVE)
        closed = CaseQuery(caller=lawyer_caller(), status_bucket=StatusBucket.CLOSED)

        open_case = make_case()
        archived = make_case(status="archived")
        won_but_open = make_case(outcome="won")

        assert active.matches(open_case)
        assert not active.matches(archived)
        assert not active.matches(won_but_open)
        assert closed.matches(won_but_open)
        assert closed.matches(make_case(status="completed"))
        assert not closed.matches(archived)

    def test_created_range(self):
        now = utcnow()
        query = CaseQuery(caller=lawyer_caller(), created_from=now - timedelta(days=5))
        assert query.matches(make_case(created_at=now - timedelta(days=1)))
        assert not query.matches(make_case(created_at=now - timedelta(days=6)))
        assert not query.matches(make_case(created_at=None))


class TestNormalizeFilter:

    def test_all_and_blank_mean_no_filter(self):
        assert normalize_filter(None) is None
        assert normalize_filter("") is None
        assert normalize_filter("  ") is None
        assert normalize_filter("ALL") is None

    def test_value_is_trimmed(self):
        assert normalize_filter(" labor ") == "labor"
