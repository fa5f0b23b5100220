# tests/test_reviews.py — Review info CRUD & asset pivot endpoint tests
import pytest
import pytest_asyncio
from httpx import AsyncClient

from auth import AuthService
from pivot.client import PivotApiClient
from pivot.errors import AuthorizationError
from pivot.filters import FilterSpec
from pivot.pagination import PaginationCoordinator, QueryIdentity
from pivot.sort_keys import SortDirection
from tests.conftest import add_category, add_review, get_auth_headers

PIVOT = "/api/projects/demo/reviews/assets/pivot"


@pytest_asyncio.fixture
async def seeded(db_session):
    """hero: two mdl takes and a rig take; villain, cam_a and crate one mdl record each"""
    await add_review(db_session, "hero", "mdl", 0, take="3", work_status="wip",
                     leaf_group="character/hero")
    await add_review(db_session, "hero", "mdl", 10, take="4", work_status="review",
                     leaf_group="character/hero")
    await add_review(db_session, "hero", "rig", 5, take="2", approval_status="approved",
                     leaf_group="character/hero")
    await add_review(db_session, "villain", "MDL", 1, take="10", work_status="retake",
                     approval_status="pending", leaf_group="character/villain")
    await add_review(db_session, "cam_a", "mdl", 2, take="", work_status="done",
                     leaf_group="camera/cam_a")
    await add_review(db_session, "crate", "mdl", 3, take="abc")
    await add_review(db_session, "ghost", "mdl", 4, take="1", deleted=99)
    await add_review(db_session, "hero", "mdl", 4, take="9", project="other")
    for path in ("character/hero", "character/villain", "camera/cam_a"):
        await add_category(db_session, path)


def _names(body):
    return [row["group_1"] for row in body["assets"]]


@pytest.mark.asyncio
class TestPivotList:
    async def test_requires_auth(self, client: AsyncClient):
        res = await client.get(PIVOT)
        assert res.status_code == 401

    async def test_latest_record_per_phase(self, client: AsyncClient, test_user, seeded):
        res = await client.get(PIVOT, headers=get_auth_headers(test_user))
        assert res.status_code == 200
        body = res.json()
        assert body["total"] == 4
        assert "groups" not in body
        hero = next(row for row in body["assets"] if row["group_1"] == "hero")
        assert hero["mdl_take"] == "4"
        assert hero["mdl_work"] == "review"
        assert hero["rig_take"] == "2"
        assert hero["rig_appr"] == "approved"
        assert hero["bld_take"] is None
        assert hero["top_group_node"] == "character"

    async def test_deleted_and_other_projects_excluded(self, client: AsyncClient, test_user, seeded):
        res = await client.get(PIVOT, headers=get_auth_headers(test_user))
        names = _names(res.json())
        assert "ghost" not in names
        assert names.count("hero") == 1

    async def test_default_order_is_by_name(self, client: AsyncClient, test_user, seeded):
        res = await client.get(PIVOT, headers=get_auth_headers(test_user))
        body = res.json()
        assert _names(body) == ["cam_a", "crate", "hero", "villain"]
        assert body["sort"] == "group_1"
        assert body["phase"] == "none"

    async def test_take_sort_puts_empty_last_both_ways(self, client: AsyncClient, test_user, seeded):
        headers = get_auth_headers(test_user)
        asc = (await client.get(PIVOT, params={"sort": "mdl_take", "dir": "ASC"}, headers=headers)).json()
        desc = (await client.get(PIVOT, params={"sort": "mdl_take", "dir": "DESC"}, headers=headers)).json()
        assert _names(asc) == ["hero", "villain", "crate", "cam_a"]
        assert _names(desc) == ["villain", "hero", "crate", "cam_a"]
        assert asc["phase"] == "mdl"
        assert desc["dir"] == "DESC"

    async def test_unknown_sort_key_falls_back(self, client: AsyncClient, test_user, seeded):
        res = await client.get(PIVOT, params={"sort": "bogus_field", "dir": "DESC"},
                               headers=get_auth_headers(test_user))
        body = res.json()
        assert body["sort"] == "group_1"
        assert _names(body) == ["villain", "hero", "crate", "cam_a"]

    async def test_phase_hint_echoed_for_name_sort(self, client: AsyncClient, test_user, seeded):
        res = await client.get(PIVOT, params={"phase": "RIG"}, headers=get_auth_headers(test_user))
        assert res.json()["phase"] == "rig"

    async def test_paging(self, client: AsyncClient, test_user, seeded):
        headers = get_auth_headers(test_user)
        first = (await client.get(PIVOT, params={"page": 1, "per_page": 3}, headers=headers)).json()
        second = (await client.get(PIVOT, params={"page": 2, "per_page": 3}, headers=headers)).json()
        assert _names(first) == ["cam_a", "crate", "hero"]
        assert _names(second) == ["villain"]
        assert second["total"] == 4

    @pytest.mark.parametrize("params,page,per_page", [
        ({"page": "abc"}, 1, 15),
        ({"page": "-3"}, 1, 15),
        ({"per_page": "0"}, 1, 15),
        ({"per_page": "5000"}, 1, 1000),
        ({"page": "2", "per_page": "x"}, 2, 15),
    ])
    async def test_paging_params_clamped(self, client: AsyncClient, test_user, params, page, per_page):
        res = await client.get(PIVOT, params=params, headers=get_auth_headers(test_user))
        assert res.status_code == 200
        assert res.json()["page"] == page
        assert res.json()["per_page"] == per_page

    async def test_empty_project(self, client: AsyncClient, test_user):
        res = await client.get("/api/projects/empty/reviews/assets/pivot", headers=get_auth_headers(test_user))
        assert res.status_code == 200
        assert res.json()["assets"] == []
        assert res.json()["total"] == 0


@pytest.mark.asyncio
class TestPivotFilters:
    async def test_name_prefix(self, client: AsyncClient, test_user, seeded):
        res = await client.get(PIVOT, params={"name": "HE"}, headers=get_auth_headers(test_user))
        assert _names(res.json()) == ["hero"]
        assert res.json()["total"] == 1

    async def test_name_exact(self, client: AsyncClient, test_user, seeded):
        headers = get_auth_headers(test_user)
        res = await client.get(PIVOT, params={"name": "her", "name_mode": "exact"}, headers=headers)
        assert res.json()["total"] == 0
        res = await client.get(PIVOT, params={"name": " Hero ", "name_mode": "exact"}, headers=headers)
        assert _names(res.json()) == ["hero"]

    async def test_name_wildcards_are_literal(self, client: AsyncClient, test_user, db_session):
        await add_review(db_session, "a_b", "mdl")
        await add_review(db_session, "axb", "mdl")
        await add_review(db_session, "50%off", "mdl")
        headers = get_auth_headers(test_user)
        res = await client.get(PIVOT, params={"name": "a_"}, headers=headers)
        assert _names(res.json()) == ["a_b"]
        res = await client.get(PIVOT, params={"name": "%"}, headers=headers)
        assert res.json()["total"] == 0

    async def test_status_filters_are_inclusive_or(self, client: AsyncClient, test_user, seeded):
        res = await client.get(PIVOT, params={"work": "retake", "appr": "APPROVED"},
                               headers=get_auth_headers(test_user))
        body = res.json()
        assert sorted(_names(body)) == ["hero", "villain"]
        assert body["total"] == 2

    async def test_status_filter_sees_only_latest_records(self, client: AsyncClient, test_user, seeded):
        res = await client.get(PIVOT, params={"work": "wip"}, headers=get_auth_headers(test_user))
        assert res.json()["total"] == 0

    async def test_blank_filters_ignored(self, client: AsyncClient, test_user, seeded):
        res = await client.get(PIVOT, params={"name": "  ", "work": " , "}, headers=get_auth_headers(test_user))
        assert res.json()["total"] == 4


@pytest.mark.asyncio
class TestPivotGrouped:
    async def test_groups_and_counts(self, client: AsyncClient, test_user, seeded):
        res = await client.get(PIVOT, params={"view": "grouped"}, headers=get_auth_headers(test_user))
        body = res.json()
        assert "assets" not in body
        groups = {g["group_name"]: g for g in body["groups"]}
        assert [g["group_name"] for g in body["groups"]] == ["camera", "character", "unassigned"]
        assert groups["character"]["total_count"] == 2
        assert [r["group_1"] for r in groups["character"]["items"]] == ["hero", "villain"]
        assert [r["group_1"] for r in groups["unassigned"]["items"]] == ["crate"]
        assert body["total"] == 4

    async def test_group_totals_cover_all_pages(self, client: AsyncClient, test_user, seeded):
        res = await client.get(PIVOT, params={"view": "grouped", "per_page": 2},
                               headers=get_auth_headers(test_user))
        groups = res.json()["groups"]
        assert [g["group_name"] for g in groups] == ["camera", "character"]
        assert groups[1]["total_count"] == 2
        assert len(groups[1]["items"]) == 1

    async def test_top_groups(self, client: AsyncClient, test_user, seeded):
        res = await client.get("/api/projects/demo/reviews/assets/top-groups", headers=get_auth_headers(test_user))
        assert res.json()["groups"] == ["camera", "character", "unassigned"]


@pytest.mark.asyncio
class TestPivotClient:
    async def test_coordinator_loads_through_api(self, client: AsyncClient, test_user, seeded):
        token = AuthService.create_access_token({"sub": test_user.id, "email": test_user.email, "role": "artist"})
        api = PivotApiClient(token=token, client=client)
        coordinator = PaginationCoordinator(api.fetch_page)

        identity = QueryIdentity(
            project="demo", page_size=2, sort_key="mdl_take", direction=SortDirection.DESC,
            filters=FilterSpec.from_raw(name="h"),
        )
        state = await coordinator.load(identity)
        assert [row.group_1 for row in state.data.rows] == ["hero"]
        assert state.data.total == 1
        assert state.data_identity == identity

    async def test_unauthorized_client(self, client: AsyncClient, seeded):
        coordinator = PaginationCoordinator(PivotApiClient(client=client).fetch_page)
        with pytest.raises(AuthorizationError):
            await coordinator.load(QueryIdentity(project="demo"))


@pytest.mark.asyncio
class TestReviewInfos:
    async def test_create_review(self, client: AsyncClient, test_user):
        res = await client.post("/api/projects/demo/reviews", headers=get_auth_headers(test_user), json={
            "group_1": " hero ",
            "relation": "main",
            "phase": "MDL",
            "take": "7",
            "work_status": "wip",
        })
        assert res.status_code == 201
        data = res.json()
        assert data["group_1"] == "hero"
        assert data["phase"] == "mdl"
        assert data["studio"] == "north"
        assert data["work_status_updated_user"] == "artist@studio.dev"
        assert data["deleted"] == 0

    async def test_created_review_appears_in_pivot(self, client: AsyncClient, test_user):
        headers = get_auth_headers(test_user)
        await client.post("/api/projects/demo/reviews", headers=headers, json={
            "group_1": "lamp", "phase": "ldv", "take": "12", "approval_status": "approved",
        })
        res = await client.get(PIVOT, headers=headers)
        row = res.json()["assets"][0]
        assert row["group_1"] == "lamp"
        assert row["ldv_take"] == "12"
        assert row["ldv_submitted"] is not None

    async def test_get_review_not_found(self, client: AsyncClient, test_user):
        res = await client.get("/api/projects/demo/reviews/404", headers=get_auth_headers(test_user))
        assert res.status_code == 404

    async def test_update_requires_coordinator(self, client: AsyncClient, test_user, db_session):
        review = await add_review(db_session, "hero", "mdl", work_status="wip")
        res = await client.patch(
            f"/api/projects/demo/reviews/{review.id}",
            headers=get_auth_headers(test_user),
            json={"work_status": "done"},
        )
        assert res.status_code == 403

    async def test_update_status(self, client: AsyncClient, coordinator, db_session):
        review = await add_review(db_session, "hero", "mdl", work_status="wip")
        res = await client.patch(
            f"/api/projects/demo/reviews/{review.id}",
            headers=get_auth_headers(coordinator),
            json={"approval_status": "approved"},
        )
        assert res.status_code == 200
        data = res.json()
        assert data["approval_status"] == "approved"
        assert data["approval_status_updated_user"] == "coordinator@studio.dev"
        assert data["work_status"] == "wip"

    async def test_update_without_changes(self, client: AsyncClient, coordinator, db_session):
        review = await add_review(db_session, "hero", "mdl", work_status="wip")
        res = await client.patch(
            f"/api/projects/demo/reviews/{review.id}",
            headers=get_auth_headers(coordinator),
            json={"work_status": "wip"},
        )
        assert res.status_code == 400

    async def test_delete_is_soft(self, client: AsyncClient, coordinator, db_session):
        review = await add_review(db_session, "hero", "mdl", take="1")
        headers = get_auth_headers(coordinator)

        res = await client.delete(f"/api/projects/demo/reviews/{review.id}", headers=headers)
        assert res.status_code == 204

        assert (await client.get(f"/api/projects/demo/reviews/{review.id}", headers=headers)).status_code == 404
        assert (await client.get(PIVOT, headers=headers)).json()["total"] == 0

        res = await client.get("/api/projects/demo/reviews", headers=headers,
                               params={"modified_since": "2024-01-01T00:00:00Z"})
        tombstones = [r for r in res.json()["reviews"] if r["id"] == review.id]
        assert tombstones[0]["deleted"] == review.id

    async def test_list_reviews_filters(self, client: AsyncClient, test_user, db_session):
        await add_review(db_session, "hero", "mdl", take="1")
        await add_review(db_session, "hero", "rig", take="1")
        await add_review(db_session, "hero", "ldv", take="2", relation="alt")
        res = await client.get("/api/projects/demo/reviews", headers=get_auth_headers(test_user),
                               params={"phase": "MDL,rig", "relation": "main"})
        body = res.json()
        assert body["total"] == 2
        assert {r["phase"] for r in body["reviews"]} == {"mdl", "rig"}

    async def test_latest_review_infos(self, client: AsyncClient, test_user, db_session):
        await add_review(db_session, "hero", "mdl", 0, take="1")
        await add_review(db_session, "hero", "mdl", 5, take="2")
        await add_review(db_session, "hero", "rig", 1, take="1")
        url = "/api/projects/demo/assets/hero/relations/main/reviewInfos"
        res = await client.get(url, headers=get_auth_headers(test_user))
        reviews = res.json()["reviews"]
        assert [(r["phase"], r["take"]) for r in reviews] == [("mdl", "2"), ("rig", "1")]

        res = await client.get(url, params={"phase": "RIG"}, headers=get_auth_headers(test_user))
        assert res.json()["total"] == 1

    async def test_list_assets(self, client: AsyncClient, test_user, seeded):
        res = await client.get("/api/projects/demo/reviews/assets", headers=get_auth_headers(test_user))
        body = res.json()
        assert body["total"] == 4
        assert {"name": "hero", "relation": "main"} in body["assets"]


@pytest.mark.asyncio
class TestGroupCategories:
    async def test_create_derives_top_node(self, client: AsyncClient, coordinator):
        res = await client.post("/api/projects/demo/group-categories", headers=get_auth_headers(coordinator),
                                json={"path": "/prop/furniture/lamp/"})
        assert res.status_code == 201
        assert res.json()["path"] == "prop/furniture/lamp"
        assert res.json()["top_node"] == "prop"

    async def test_duplicate_conflicts(self, client: AsyncClient, coordinator):
        headers = get_auth_headers(coordinator)
        await client.post("/api/projects/demo/group-categories", headers=headers, json={"path": "set/city"})
        res = await client.post("/api/projects/demo/group-categories", headers=headers, json={"path": "set/city"})
        assert res.status_code == 409

    async def test_list(self, client: AsyncClient, test_user, db_session):
        await add_category(db_session, "set/city")
        await add_category(db_session, "camera/main")
        await add_category(db_session, "prop/box", project="other")
        res = await client.get("/api/projects/demo/group-categories", headers=get_auth_headers(test_user))
        assert [c["path"] for c in res.json()["categories"]] == ["camera/main", "set/city"]
