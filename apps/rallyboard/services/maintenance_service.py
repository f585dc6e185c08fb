"""
Administrative data-repair operations.

Every operation here is idempotent and returns a summary dict. None of them
touch game outcomes; only merge_duplicate_users combines stat counters.
"""

import logging
from collections import defaultdict
from typing import Dict, List
from sqlalchemy import select, update, delete, insert, func
from sqlalchemy.ext.asyncio import AsyncSession
from rallyboard.database.db import Base
from rallyboard.database.models import (
    MemberRole, PackageType, PlayerStats, Team, TeamMember, Tournament, User,
)
from rallyboard.services.auth_service import Identity
from rallyboard.services.user_service import email_local_part, normalize_email
from rallyboard.utils.constants import DEFAULT_TEAM_QUOTA, DEFAULT_TOURNAMENT_QUOTA

logger = logging.getLogger(__name__)


async def bootstrap(session: AsyncSession, identity: Identity) -> Dict:
    """
    Recover from an empty database: create missing tables, then make sure the
    caller has a user row. Never deletes or overwrites anything.

    Raises:
        ValueError: If the identity has no email
    """
    if not identity.email:
        raise ValueError("No email found")
    email = normalize_email(identity.email)

    await session.run_sync(
        lambda sync_session: Base.metadata.create_all(bind=sync_session.connection(), checkfirst=True)
    )

    result = await session.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    created = False
    if not user:
        user = User(
            email=email,
            external_id=identity.external_id,
            name=identity.name or email_local_part(email),
            image_url=identity.image_url,
            package_type=PackageType.FREE,
            team_quota=DEFAULT_TEAM_QUOTA,
            tournament_quota=DEFAULT_TOURNAMENT_QUOTA,
        )
        session.add(user)
        created = True
    elif not user.external_id:
        user.external_id = identity.external_id

    await session.commit()
    await session.refresh(user)
    logger.info(f"Bootstrap complete for user {user.id} (created={created})")
    return {"user": {"id": user.id, "email": user.email}, "created": created}


def _member_keep_order(member: TeamMember):
    # Linked rows first, then owners, then rows already lowercase, then oldest
    return (
        member.user_id is None,
        member.role != MemberRole.OWNER,
        member.email != normalize_email(member.email),
        member.id,
    )


async def _lowercase_member_emails(session: AsyncSession) -> Dict:
    """
    Lowercase member emails, collapsing case variants within a team first.

    (team_id, email) is unique, so of ``Bob@x.com`` and ``bob@x.com`` on one
    team only one row survives: the linked one if any. It inherits a missing
    user link, display name and the owner role from the rows it replaces.
    """
    result = await session.execute(select(TeamMember).order_by(TeamMember.id))
    groups = defaultdict(list)
    for member in result.scalars().all():
        groups[(member.team_id, normalize_email(member.email))].append(member)

    summary = {"members_lowercased": 0, "duplicate_members_removed": 0}
    keep = []
    for rows in groups.values():
        rows.sort(key=_member_keep_order)
        kept, dropped = rows[0], rows[1:]
        for dup in dropped:
            kept.user_id = kept.user_id or dup.user_id
            kept.display_name = kept.display_name or dup.display_name
            if dup.role == MemberRole.OWNER:
                kept.role = MemberRole.OWNER
            await session.delete(dup)
            summary["duplicate_members_removed"] += 1
        keep.append(kept)
    # Deletes must reach the database before any row takes over their email
    await session.flush()

    for member in keep:
        lower = normalize_email(member.email)
        if lower != member.email:
            member.email = lower
            summary["members_lowercased"] += 1
    await session.flush()
    if summary["duplicate_members_removed"]:
        logger.info(f"Removed {summary['duplicate_members_removed']} case-duplicate team members")
    return summary


async def _lowercase_user_emails(session: AsyncSession) -> int:
    result = await session.execute(select(User))
    taken = set()
    users = result.scalars().all()
    for user in users:
        taken.add(user.email)
    changed = 0
    for user in users:
        lower = normalize_email(user.email)
        # Case-variant duplicates are left for merge_duplicate_users
        if lower != user.email and lower not in taken:
            taken.discard(user.email)
            user.email = lower
            taken.add(lower)
            changed += 1
    await session.flush()
    return changed


async def link_orphan_members(session: AsyncSession) -> int:
    """
    Link every member without a user to the user with the same email.

    Run once at startup.

    Returns:
        Number of members linked
    """
    result = await session.execute(
        select(TeamMember, User)
        .join(User, User.email == TeamMember.email)
        .where(TeamMember.user_id.is_(None))
    )
    linked = 0
    for member, user in result.all():
        member.user_id = user.id
        member.display_name = member.display_name or user.name
        linked += 1
    await session.commit()
    if linked:
        logger.info(f"Startup: linked {linked} orphan team members to users")
    return linked


async def safe_relink_members(session: AsyncSession) -> Dict:
    """
    Restore missing member -> user links without creating users or touching stats.
    """
    summary = {"relinked_members": 0, "skipped_members": 0, "missing_users": []}

    try:
        summary.update(await _lowercase_member_emails(session))

        result = await session.execute(select(TeamMember))
        for member in result.scalars().all():
            if member.user_id is not None:
                summary["skipped_members"] += 1
                continue

            user_result = await session.execute(select(User).where(User.email == member.email))
            user = user_result.scalar_one_or_none()
            if user:
                member.user_id = user.id
                member.display_name = member.display_name or user.name or email_local_part(member.email)
                summary["relinked_members"] += 1
            else:
                summary["missing_users"].append(member.email)

        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(f"Safe relink: {summary['relinked_members']} relinked, {len(summary['missing_users'])} missing")
    return summary


async def _backfill_members(session: AsyncSession) -> Dict:
    """Link all orphan members, creating guest users where none exist. Does not commit."""
    summary = {"linked_members": 0, "created_users": 0}

    result = await session.execute(select(TeamMember).where(TeamMember.user_id.is_(None)))
    for member in result.scalars().all():
        user_result = await session.execute(select(User).where(User.email == member.email))
        user = user_result.scalar_one_or_none()
        if not user:
            user = User(
                email=member.email,
                name=member.display_name or email_local_part(member.email),
                package_type=PackageType.FREE,
                team_quota=DEFAULT_TEAM_QUOTA,
                tournament_quota=DEFAULT_TOURNAMENT_QUOTA,
            )
            session.add(user)
            await session.flush()
            summary["created_users"] += 1

        member.user_id = user.id
        member.display_name = member.display_name or user.name or email_local_part(member.email)
        summary["linked_members"] += 1

    await session.flush()
    return summary


async def backfill_members(session: AsyncSession) -> Dict:
    """Link every orphan member, creating guest users as needed."""
    try:
        summary = await _lowercase_member_emails(session)
        summary.update(await _backfill_members(session))
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(f"Backfill: {summary}")
    return summary


async def _placeholder_owner(session: AsyncSession, local_part: str, name: str) -> User:
    email = f"{local_part}@placeholder.local"
    result = await session.execute(select(User).where(User.email == email))
    owner = result.scalar_one_or_none()
    if not owner:
        owner = User(email=email, name=f"Placeholder Owner ({name})", package_type=PackageType.FREE)
        session.add(owner)
        await session.flush()
    return owner


async def full_backfill(session: AsyncSession) -> Dict:
    """
    Exhaustive repair: normalize emails, link/create member users and give
    ownerless teams and tournaments a placeholder owner.
    """
    summary = {
        "users_lowercased": 0,
        "members_lowercased": 0,
        "duplicate_members_removed": 0,
        "linked_members": 0,
        "created_users": 0,
        "repaired_team_owners": 0,
        "repaired_tournament_owners": 0,
    }

    try:
        summary["users_lowercased"] = await _lowercase_user_emails(session)
        summary.update(await _lowercase_member_emails(session))
        summary.update(await _backfill_members(session))

        user_ids = set((await session.execute(select(User.id))).scalars().all())

        teams = await session.execute(select(Team))
        for team in teams.scalars().all():
            if team.owner_id not in user_ids:
                owner = await _placeholder_owner(session, f"owner-{team.id}", team.name)
                user_ids.add(owner.id)
                team.owner_id = owner.id
                summary["repaired_team_owners"] += 1

        tournaments = await session.execute(select(Tournament))
        for tournament in tournaments.scalars().all():
            if tournament.owner_id not in user_ids:
                owner = await _placeholder_owner(session, f"tournament-owner-{tournament.id}", tournament.name)
                user_ids.add(owner.id)
                tournament.owner_id = owner.id
                summary["repaired_tournament_owners"] += 1

        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(f"Full backfill: {summary}")
    return summary


async def find_duplicate_emails(session: AsyncSession) -> List[str]:
    """Lowercased emails shared by more than one user."""
    lowered = func.lower(User.email)
    result = await session.execute(
        select(lowered).group_by(lowered).having(func.count(User.id) > 1)
    )
    return sorted(result.scalars().all())


async def _merge_for_email(session: AsyncSession, email: str, delete_duplicates: bool) -> Dict:
    result = await session.execute(
        select(User).where(func.lower(User.email) == email).order_by(User.created_at, User.id)
    )
    users = result.scalars().all()
    canonical = next((u for u in users if u.external_id), users[0])
    duplicates = [u for u in users if u.id != canonical.id]
    duplicate_ids = [u.id for u in duplicates]

    await session.execute(
        update(TeamMember).where(TeamMember.user_id.in_(duplicate_ids)).values(user_id=canonical.id)
    )
    await session.execute(
        update(Team).where(Team.owner_id.in_(duplicate_ids)).values(owner_id=canonical.id)
    )
    await session.execute(
        update(Tournament).where(Tournament.owner_id.in_(duplicate_ids)).values(owner_id=canonical.id)
    )

    for dup in duplicates:
        canonical.name = canonical.name or dup.name
        canonical.image_url = canonical.image_url or dup.image_url

    if delete_duplicates:
        canonical.team_count += sum(d.team_count or 0 for d in duplicates)
        canonical.tournament_count += sum(d.tournament_count or 0 for d in duplicates)
        external_id = canonical.external_id or next(
            (d.external_id for d in duplicates if d.external_id), None
        )
        await session.execute(delete(User).where(User.id.in_(duplicate_ids)))
        canonical.external_id = external_id
        canonical.email = email

    await session.flush()
    return {"email": email, "canonical_id": canonical.id, "merged": duplicate_ids}


async def _merge_player_stats(session: AsyncSession) -> int:
    """Fold player_stats rows whose emails differ only by case into the lowercase row."""
    result = await session.execute(select(PlayerStats))
    groups = defaultdict(list)
    for row in result.scalars().all():
        groups[normalize_email(row.email)].append(row)

    merged = 0
    for email, rows in groups.items():
        if len(rows) == 1 and rows[0].email == email:
            continue
        totals = {
            "points": sum(r.points for r in rows),
            "wins": sum(r.wins for r in rows),
            "losses": sum(r.losses for r in rows),
        }
        await session.execute(
            delete(PlayerStats).where(PlayerStats.email.in_([r.email for r in rows]))
        )
        await session.execute(insert(PlayerStats).values(email=email, **totals))
        merged += len(rows) - 1
    return merged


async def merge_duplicate_users(session: AsyncSession, delete_duplicates: bool = True) -> Dict:
    """
    Merge users whose emails collide case-insensitively.

    The canonical user is the one linked to the identity provider, else the
    earliest. Owned teams, tournaments and memberships move to it and missing
    profile fields are filled from the duplicates. Only when
    ``delete_duplicates`` is set are counts and player_stats rows summed,
    duplicates deleted and the canonical email lowercased; otherwise
    duplicates are kept.
    """
    summary = {"duplicate_emails": [], "merged": [], "player_stats_merged": 0}

    try:
        emails = await find_duplicate_emails(session)
        summary["duplicate_emails"] = emails
        for email in emails:
            summary["merged"].append(await _merge_for_email(session, email, delete_duplicates))
        if delete_duplicates:
            summary["player_stats_merged"] = await _merge_player_stats(session)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(f"Merged duplicates for {len(summary['duplicate_emails'])} emails")
    return summary
