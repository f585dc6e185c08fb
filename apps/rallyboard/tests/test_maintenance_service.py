"""
Tests for the administrative repair operations.
"""

import pytest
from sqlalchemy import select, insert
from rallyboard.database.models import MemberRole, PlayerStats, Team, TeamMember, Tournament, User
from rallyboard.services import maintenance_service
from rallyboard.services.auth_service import Identity

# db_session fixture is provided by conftest.py


async def _add_team(session, owner_id, slug="test-team"):
    team = Team(slug=slug, name=slug.replace("-", " ").title(), owner_id=owner_id)
    session.add(team)
    await session.commit()
    return team.id


@pytest.mark.asyncio
async def test_bootstrap_creates_user_once(db_session):
    identity = Identity(external_id="ext_boot", email="Boot@Example.com", name=None)

    first = await maintenance_service.bootstrap(db_session, identity)
    second = await maintenance_service.bootstrap(db_session, identity)

    assert first["created"] is True
    assert second["created"] is False
    assert first["user"] == second["user"]
    assert first["user"]["email"] == "boot@example.com"
    name = (await db_session.execute(select(User.name))).scalar_one()
    assert name == "boot"


@pytest.mark.asyncio
async def test_bootstrap_links_missing_external_id(db_session):
    db_session.add(User(email="guest@example.com"))
    await db_session.commit()

    result = await maintenance_service.bootstrap(
        db_session, Identity(external_id="ext_guest", email="guest@example.com")
    )

    assert result["created"] is False
    external_id = (await db_session.execute(select(User.external_id))).scalar_one()
    assert external_id == "ext_guest"


@pytest.mark.asyncio
async def test_bootstrap_requires_email(db_session):
    with pytest.raises(ValueError):
        await maintenance_service.bootstrap(db_session, Identity(external_id="ext", email=None))


@pytest.mark.asyncio
async def test_link_orphan_members(db_session):
    user = User(email="member@example.com", name="Member")
    owner = User(email="owner@example.com")
    db_session.add_all([user, owner])
    await db_session.commit()
    user_id = user.id
    team_id = await _add_team(db_session, owner.id)
    db_session.add(TeamMember(team_id=team_id, email="member@example.com"))
    db_session.add(TeamMember(team_id=team_id, email="nobody@example.com"))
    await db_session.commit()

    assert await maintenance_service.link_orphan_members(db_session) == 1
    assert await maintenance_service.link_orphan_members(db_session) == 0

    rows = (await db_session.execute(
        select(TeamMember.email, TeamMember.user_id, TeamMember.display_name).order_by(TeamMember.email)
    )).all()
    assert [tuple(r) for r in rows] == [
        ("member@example.com", user_id, "Member"),
        ("nobody@example.com", None, None),
    ]


@pytest.mark.asyncio
async def test_safe_relink_never_creates_users(db_session):
    owner = User(email="owner@example.com")
    known = User(email="known@example.com", name="Known")
    db_session.add_all([owner, known])
    await db_session.commit()
    team_id = await _add_team(db_session, owner.id)
    db_session.add(TeamMember(team_id=team_id, email="Known@Example.com"))
    db_session.add(TeamMember(team_id=team_id, email="ghost@example.com"))
    await db_session.commit()

    summary = await maintenance_service.safe_relink_members(db_session)

    assert summary["relinked_members"] == 1
    assert summary["missing_users"] == ["ghost@example.com"]
    users = (await db_session.execute(select(User.email))).scalars().all()
    assert sorted(users) == ["known@example.com", "owner@example.com"]


@pytest.mark.asyncio
async def test_safe_relink_collapses_case_variant_members(db_session):
    owner = User(email="owner@example.com")
    bob = User(email="bob@x.com", name="Bob")
    db_session.add_all([owner, bob])
    await db_session.commit()
    bob_id = bob.id
    team_id = await _add_team(db_session, owner.id)
    other_team_id = await _add_team(db_session, owner.id, "other-team")
    db_session.add_all([
        TeamMember(team_id=team_id, email="Bob@x.com", user_id=bob_id),
        TeamMember(team_id=team_id, email="bob@x.com", display_name="Bobby"),
        TeamMember(team_id=other_team_id, email="BOB@x.com"),
    ])
    await db_session.commit()

    summary = await maintenance_service.safe_relink_members(db_session)

    assert summary["duplicate_members_removed"] == 1
    assert summary["members_lowercased"] == 2
    assert summary["missing_users"] == []
    rows = (await db_session.execute(
        select(TeamMember.team_id, TeamMember.email, TeamMember.user_id, TeamMember.display_name)
        .order_by(TeamMember.team_id)
    )).all()
    assert [tuple(r) for r in rows] == [
        (team_id, "bob@x.com", bob_id, "Bobby"),
        (other_team_id, "bob@x.com", bob_id, "Bob"),
    ]

    again = await maintenance_service.safe_relink_members(db_session)
    assert again["duplicate_members_removed"] == 0
    assert again["members_lowercased"] == 0


@pytest.mark.asyncio
async def test_backfill_keeps_owner_role_when_collapsing_members(db_session):
    owner = User(email="owner@example.com")
    db_session.add(owner)
    await db_session.commit()
    team_id = await _add_team(db_session, owner.id)
    db_session.add_all([
        TeamMember(team_id=team_id, email="carol@x.com", display_name="Carol"),
        TeamMember(team_id=team_id, email="Carol@X.com", role=MemberRole.OWNER),
    ])
    await db_session.commit()

    summary = await maintenance_service.backfill_members(db_session)

    assert summary == {
        "members_lowercased": 1, "duplicate_members_removed": 1, "linked_members": 1, "created_users": 1,
    }
    row = (await db_session.execute(
        select(TeamMember.email, TeamMember.role, TeamMember.display_name, TeamMember.user_id)
    )).one()
    assert (row.email, row.role, row.display_name) == ("carol@x.com", MemberRole.OWNER, "Carol")
    user_id = (await db_session.execute(select(User.id).where(User.email == "carol@x.com"))).scalar_one()
    assert row.user_id == user_id


@pytest.mark.asyncio
async def test_backfill_creates_guest_users(db_session):
    owner = User(email="owner@example.com")
    db_session.add(owner)
    await db_session.commit()
    team_id = await _add_team(db_session, owner.id)
    db_session.add(TeamMember(team_id=team_id, email="ghost@example.com", display_name="Ghost"))
    await db_session.commit()

    summary = await maintenance_service.backfill_members(db_session)

    assert summary == {
        "members_lowercased": 0, "duplicate_members_removed": 0, "linked_members": 1, "created_users": 1,
    }
    ghost = (await db_session.execute(
        select(User.id, User.name).where(User.email == "ghost@example.com")
    )).one()
    assert ghost.name == "Ghost"
    member_user = (await db_session.execute(
        select(TeamMember.user_id).where(TeamMember.email == "ghost@example.com")
    )).scalar_one()
    assert member_user == ghost.id

    again = await maintenance_service.backfill_members(db_session)
    assert again == {
        "members_lowercased": 0, "duplicate_members_removed": 0, "linked_members": 0, "created_users": 0,
    }


@pytest.mark.asyncio
async def test_full_backfill_repairs_missing_owners(db_session):
    if db_session.get_bind().dialect.name != "sqlite":
        pytest.skip("foreign keys prevent dangling owners on this backend")
    owner = User(email="owner@example.com")
    db_session.add(owner)
    await db_session.commit()
    await _add_team(db_session, owner.id, "kept-team")
    # Owner ids that no longer point at a user
    await db_session.execute(insert(Team).values(slug="lost-team", name="Lost Team", owner_id=9999))
    await db_session.execute(
        insert(Tournament).values(slug="lost-cup", name="Lost Cup", owner_id=8888, min_games_per_player=0)
    )
    await db_session.commit()

    summary = await maintenance_service.full_backfill(db_session)

    assert summary["repaired_team_owners"] == 1
    assert summary["repaired_tournament_owners"] == 1
    lost_team = (await db_session.execute(
        select(Team.id, User.email, User.name).join(User, User.id == Team.owner_id).where(Team.slug == "lost-team")
    )).one()
    assert lost_team.email == f"owner-{lost_team.id}@placeholder.local"
    assert lost_team.name == "Placeholder Owner (Lost Team)"
    lost_cup = (await db_session.execute(
        select(Tournament.id, User.email)
        .join(User, User.id == Tournament.owner_id)
        .where(Tournament.slug == "lost-cup")
    )).one()
    assert lost_cup.email == f"tournament-owner-{lost_cup.id}@placeholder.local"
    placeholders = (await db_session.execute(
        select(User.email).where(User.email.like("%@placeholder.local"))
    )).scalars().all()
    assert sorted(placeholders) == sorted([lost_team.email, lost_cup.email])

    again = await maintenance_service.full_backfill(db_session)
    assert again["repaired_team_owners"] == 0
    assert again["repaired_tournament_owners"] == 0


@pytest.mark.asyncio
async def test_merge_duplicate_users(db_session):
    linked = User(email="Dup@Example.com", external_id="ext_dup", team_count=1)
    guest = User(email="dup@example.com", name="Dupe", image_url="https://img/d.png", team_count=2)
    db_session.add_all([guest, linked])
    await db_session.commit()
    linked_id, guest_id = linked.id, guest.id
    team_id = await _add_team(db_session, guest_id)
    db_session.add(TeamMember(team_id=team_id, email="dup@example.com", user_id=guest_id))
    await db_session.execute(insert(PlayerStats).values(email="Dup@Example.com", points=10, wins=1, losses=0))
    await db_session.execute(insert(PlayerStats).values(email="dup@example.com", points=2, wins=0, losses=1))
    await db_session.commit()

    assert await maintenance_service.find_duplicate_emails(db_session) == ["dup@example.com"]

    summary = await maintenance_service.merge_duplicate_users(db_session)

    assert summary["merged"] == [{"email": "dup@example.com", "canonical_id": linked_id, "merged": [guest_id]}]
    assert summary["player_stats_merged"] == 1
    users = (await db_session.execute(
        select(User.id, User.email, User.name, User.image_url, User.team_count)
    )).all()
    assert [tuple(u) for u in users] == [(linked_id, "dup@example.com", "Dupe", "https://img/d.png", 3)]
    assert (await db_session.execute(select(Team.owner_id))).scalar_one() == linked_id
    assert (await db_session.execute(select(TeamMember.user_id))).scalar_one() == linked_id
    stats = (await db_session.execute(select(PlayerStats.email, PlayerStats.points, PlayerStats.wins, PlayerStats.losses))).all()
    assert [tuple(s) for s in stats] == [("dup@example.com", 12, 1, 1)]

    assert await maintenance_service.find_duplicate_emails(db_session) == []


@pytest.mark.asyncio
async def test_merge_dry_run_keeps_duplicates(db_session):
    db_session.add_all([User(email="a@example.com"), User(email="A@example.com", external_id="ext_a")])
    await db_session.commit()

    summary = await maintenance_service.merge_duplicate_users(db_session, delete_duplicates=False)

    assert summary["duplicate_emails"] == ["a@example.com"]
    count = (await db_session.execute(select(User.id))).scalars().all()
    assert len(count) == 2
