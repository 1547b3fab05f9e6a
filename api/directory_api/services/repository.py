from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime
from functools import lru_cache
from typing import Any

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from directory_api.core.config import get_settings
from directory_api.services.sanitize import escape_like


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when an operation violates state transition rules."""


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""


@dataclass(slots=True)
class MachineCredentialRecord:
    module_db_id: str
    module_id: str
    scopes: list[str]
    key_hash: str


CLAIM_STATUSES = {"pending", "under_review", "approved", "rejected"}
OPEN_CLAIM_STATUSES = ("pending", "under_review")
PROFILE_ROLES = {"user", "agency_owner", "admin"}
AGENCY_EDITABLE_FIELDS = {
    "name",
    "description",
    "website",
    "phone",
    "email",
    "founded_year",
    "employee_count",
    "headquarters",
    "company_size",
    "offers_per_diem",
    "is_union",
}

_AGENCY_EDIT_RETURNING = """
  id::text as id,
  name,
  description,
  website,
  phone,
  email,
  founded_year,
  employee_count,
  headquarters,
  last_edited_at,
  last_edited_by::text as last_edited_by
"""

_CLAIM_COLUMNS = """
  c.id::text as id,
  c.agency_id::text as agency_id,
  c.user_id::text as user_id,
  c.business_email,
  c.phone_number,
  c.position_title,
  c.verification_method,
  c.additional_notes,
  c.status,
  c.reviewed_by::text as reviewed_by,
  c.reviewed_at,
  c.rejection_reason,
  c.email_domain_verified,
  c.created_at,
  c.updated_at,
  a.name as agency_name,
  a.slug as agency_slug,
  a.logo_url as agency_logo_url,
  a.website as agency_website,
  p.email as user_email,
  p.full_name as user_full_name
"""

_AGENCY_COLUMNS = """
  a.id::text as id,
  a.name,
  a.slug,
  a.description,
  a.logo_url,
  a.website,
  a.phone,
  a.email,
  a.is_claimed,
  a.is_active,
  a.offers_per_diem,
  a.is_union,
  a.founded_year,
  a.employee_count,
  a.headquarters,
  a.rating,
  a.review_count,
  a.project_count,
  a.verified,
  a.featured,
  a.profile_completion_percentage,
  a.created_at,
  a.updated_at,
  coalesce(
    (
      select jsonb_agg(jsonb_build_object('id', t.id, 'name', t.name, 'slug', t.slug) order by t.name)
      from agency_trades at
      join trades t on t.id = at.trade_id
      where at.agency_id = a.id
    ),
    '[]'::jsonb
  ) as trades,
  coalesce(
    (
      select jsonb_agg(jsonb_build_object('id', r.id, 'name', r.name, 'code', r.state_code) order by r.name)
      from agency_regions ar
      join regions r on r.id = ar.region_id
      where ar.agency_id = a.id
    ),
    '[]'::jsonb
  ) as regions
"""


class PostgresRepository:
    def __init__(self, database_url: str | None, min_pool_size: int, max_pool_size: int) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def get_machine_credentials(self, module_id: str) -> list[MachineCredentialRecord]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select
              m.id::text as module_db_id,
              m.module_id,
              m.scopes,
              mc.key_hash
            from modules m
            join module_credentials mc on mc.module_id = m.id
            where m.module_id = $1
              and m.enabled = true
              and mc.is_active = true
              and mc.revoked_at is null
              and (mc.expires_at is null or mc.expires_at > now())
            """,
            module_id,
        )
        return [
            MachineCredentialRecord(
                module_db_id=row["module_db_id"],
                module_id=row["module_id"],
                scopes=list(row["scopes"] or []),
                key_hash=row["key_hash"],
            )
            for row in rows
        ]

    # Profiles

    async def get_profile(self, user_id: str) -> dict[str, Any] | None:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                "select id::text as id, role, email, full_name from profiles where id = $1::uuid",
                user_id,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError):
            return None
        return dict(row) if row else None

    async def set_profile_role(self, *, user_id: str, role: str) -> dict[str, Any]:
        if role not in PROFILE_ROLES:
            raise RepositoryValidationError(f"unsupported role: {role}")
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                """
                update profiles
                set role = $2, updated_at = now()
                where id = $1::uuid
                returning id::text as id, role, email, full_name
                """,
                user_id,
                role,
            )
        except asyncpg.PostgresError as exc:
            raise RepositoryError("failed to update profile role") from exc
        if not row:
            raise RepositoryNotFoundError("profile not found")
        return dict(row)

    # Agencies

    async def search_agencies(
        self,
        *,
        search: str | None,
        trade_slugs: list[str],
        state_codes: list[str],
        limit: int,
        offset: int,
    ) -> tuple[list[dict[str, Any]], int]:
        pool = await self._get_pool()
        conditions: list[str] = ["a.is_active = true"]
        params: list[Any] = []

        def bind(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        if search:
            token = bind(f"%{escape_like(search)}%")
            conditions.append(f"(a.name ilike {token} or coalesce(a.description, '') ilike {token})")
        if trade_slugs:
            conditions.append(
                "exists (select 1 from agency_trades at join trades t on t.id = at.trade_id "
                f"where at.agency_id = a.id and t.slug = any({bind(trade_slugs)}::text[]))"
            )
        if state_codes:
            conditions.append(
                "exists (select 1 from agency_regions ar join regions r on r.id = ar.region_id "
                f"where ar.agency_id = a.id and r.state_code = any({bind(state_codes)}::text[]))"
            )

        where_sql = " and ".join(conditions)
        total = await pool.fetchval(f"select count(*) from agencies a where {where_sql}", *params)

        limit_token = bind(limit)
        offset_token = bind(offset)
        rows = await pool.fetch(
            f"""
            select {_AGENCY_COLUMNS}
            from agencies a
            where {where_sql}
            order by a.name asc, a.id asc
            limit {limit_token}
            offset {offset_token}
            """,
            *params,
        )
        return [self._agency_row_to_dict(row) for row in rows], int(total or 0)

    async def get_agency_by_slug(self, slug: str, *, active_only: bool = True) -> dict[str, Any]:
        pool = await self._get_pool()
        active_sql = "and a.is_active = true" if active_only else ""
        row = await pool.fetchrow(
            f"""
            select {_AGENCY_COLUMNS}, a.claimed_by::text as claimed_by
            from agencies a
            where a.slug = $1 {active_sql}
            """,
            slug,
        )
        if not row:
            raise RepositoryNotFoundError("agency not found")
        return self._agency_row_to_dict(row)

    async def get_agency(self, agency_id: str) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                """
                select
                  id::text as id,
                  name,
                  slug,
                  website,
                  email,
                  logo_url,
                  is_claimed,
                  claimed_by::text as claimed_by,
                  claimed_at,
                  is_active,
                  updated_at
                from agencies
                where id = $1::uuid
                """,
                agency_id,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("agency not found") from exc
        if not row:
            raise RepositoryNotFoundError("agency not found")
        return dict(row)

    async def set_agency_active(self, *, agency_id: str, is_active: bool) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                """
                update agencies
                set is_active = $2, updated_at = now()
                where id = $1::uuid
                returning id::text as id, name, slug, is_active, is_claimed, updated_at
                """,
                agency_id,
                is_active,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("agency not found") from exc
        if not row:
            raise RepositoryNotFoundError("agency not found")
        return dict(row)

    async def set_agency_claimed(self, *, agency_id: str, user_id: str, claimed_at: datetime) -> None:
        pool = await self._get_pool()
        try:
            result = await pool.execute(
                """
                update agencies
                set claimed_by = $2::uuid, claimed_at = $3, is_claimed = true, updated_at = now()
                where id = $1::uuid
                """,
                agency_id,
                user_id,
                claimed_at,
            )
        except asyncpg.PostgresError as exc:
            raise RepositoryError("failed to update agency ownership") from exc
        if result.endswith(" 0"):
            raise RepositoryNotFoundError("agency not found")

    async def clear_agency_claim(self, *, agency_id: str) -> None:
        pool = await self._get_pool()
        try:
            await pool.execute(
                """
                update agencies
                set claimed_by = null, claimed_at = null, is_claimed = false, updated_at = now()
                where id = $1::uuid
                """,
                agency_id,
            )
        except asyncpg.PostgresError as exc:
            raise RepositoryError("failed to clear agency ownership") from exc

    async def list_agency_trades(self, agency_id: str) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select t.id::text as id, t.name, t.slug
            from agency_trades at
            join trades t on t.id = at.trade_id
            where at.agency_id = $1::uuid
            order by t.name asc
            """,
            agency_id,
        )
        return [dict(row) for row in rows]

    async def list_agency_regions(self, agency_id: str) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select r.id::text as id, r.name, r.state_code
            from agency_regions ar
            join regions r on r.id = ar.region_id
            where ar.agency_id = $1::uuid
            order by r.name asc
            """,
            agency_id,
        )
        return [dict(row) for row in rows]

    async def find_trade_ids(self, trade_ids: list[str]) -> set[str]:
        pool = await self._get_pool()
        rows = await pool.fetch("select id::text as id from trades where id = any($1::uuid[])", trade_ids)
        return {row["id"] for row in rows}

    async def find_region_ids(self, region_ids: list[str]) -> set[str]:
        pool = await self._get_pool()
        rows = await pool.fetch("select id::text as id from regions where id = any($1::uuid[])", region_ids)
        return {row["id"] for row in rows}

    async def replace_agency_trades(self, *, agency_id: str, trade_ids: list[str]) -> None:
        await self._replace_agency_links(table="agency_trades", column="trade_id", agency_id=agency_id, ids=trade_ids)

    async def replace_agency_regions(self, *, agency_id: str, region_ids: list[str]) -> None:
        await self._replace_agency_links(table="agency_regions", column="region_id", agency_id=agency_id, ids=region_ids)

    async def _replace_agency_links(self, *, table: str, column: str, agency_id: str, ids: list[str]) -> None:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(
                        f"""
                        insert into {table} (agency_id, {column})
                        select $1::uuid, linked_id
                        from unnest($2::uuid[]) as linked(linked_id)
                        on conflict (agency_id, {column}) do nothing
                        """,
                        agency_id,
                        ids,
                    )
                    await conn.execute(
                        f"delete from {table} where agency_id = $1::uuid and not ({column} = any($2::uuid[]))",
                        agency_id,
                        ids,
                    )
        except asyncpg.PostgresError as exc:
            raise RepositoryError(f"failed to update {table}") from exc

    async def record_profile_edit(
        self,
        *,
        agency_id: str,
        edited_by: str,
        field_name: str,
        old_value: Any,
        new_value: Any,
    ) -> None:
        pool = await self._get_pool()
        try:
            await pool.execute(
                """
                insert into agency_profile_edits (agency_id, edited_by, field_name, old_value, new_value)
                values ($1::uuid, $2::uuid, $3, $4::jsonb, $5::jsonb)
                """,
                agency_id,
                edited_by,
                field_name,
                json.dumps(old_value),
                json.dumps(new_value),
            )
        except asyncpg.PostgresError as exc:
            raise RepositoryError("failed to record profile edit") from exc

    async def touch_agency_edit(self, *, agency_id: str, edited_by: str) -> None:
        pool = await self._get_pool()
        try:
            await pool.execute(
                "update agencies set last_edited_at = now(), last_edited_by = $2::uuid where id = $1::uuid",
                agency_id,
                edited_by,
            )
        except asyncpg.PostgresError as exc:
            raise RepositoryError("failed to update agency edit marker") from exc

    async def update_agency_fields(
        self,
        *,
        agency_id: str,
        fields: dict[str, Any],
        edited_by: str,
    ) -> dict[str, Any]:
        unknown = set(fields) - AGENCY_EDITABLE_FIELDS
        if unknown:
            raise RepositoryValidationError(f"unsupported agency fields: {sorted(unknown)}")

        params: list[Any] = [agency_id, edited_by]
        assignments: list[str] = []
        for column, value in fields.items():
            params.append(value)
            assignments.append(f"{column} = ${len(params)}")
        assignments.extend(["last_edited_at = now()", "last_edited_by = $2::uuid", "updated_at = now()"])

        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"""
                update agencies
                set {", ".join(assignments)}
                where id = $1::uuid
                returning {_AGENCY_EDIT_RETURNING}
                """,
                *params,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("agency not found") from exc
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryConflictError("an agency with this name or slug already exists") from exc
        except asyncpg.PostgresError as exc:
            raise RepositoryError("failed to update agency") from exc
        if not row:
            raise RepositoryNotFoundError("agency not found")
        return dict(row)

    # Admin agency management

    async def list_admin_agencies(
        self,
        *,
        search: str | None,
        is_active: bool | None,
        is_claimed: bool | None,
        limit: int,
        offset: int,
    ) -> tuple[list[dict[str, Any]], int]:
        pool = await self._get_pool()
        conditions: list[str] = ["true"]
        params: list[Any] = []

        def bind(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        if is_active is not None:
            conditions.append(f"a.is_active = {bind(is_active)}")
        if is_claimed is not None:
            conditions.append(f"a.is_claimed = {bind(is_claimed)}")
        if search:
            conditions.append(f"a.name ilike {bind(f'%{escape_like(search)}%')}")

        where_sql = " and ".join(conditions)
        try:
            total = await pool.fetchval(f"select count(*) from agencies a where {where_sql}", *params)
            limit_token = bind(limit)
            offset_token = bind(offset)
            rows = await pool.fetch(
                f"""
                select
                  a.id::text as id,
                  a.name,
                  a.slug,
                  a.is_active,
                  a.is_claimed,
                  a.claimed_by::text as claimed_by,
                  a.created_at,
                  a.profile_completion_percentage,
                  p.email as owner_email,
                  p.full_name as owner_full_name
                from agencies a
                left join profiles p on p.id = a.claimed_by
                where {where_sql}
                order by a.created_at desc, a.id asc
                limit {limit_token}
                offset {offset_token}
                """,
                *params,
            )
        except asyncpg.PostgresError as exc:
            raise RepositoryError("failed to list agencies") from exc
        return [self._admin_agency_row_to_dict(row) for row in rows], int(total or 0)

    async def agency_name_exists(self, name: str) -> bool:
        pool = await self._get_pool()
        try:
            found = await pool.fetchval(
                "select exists (select 1 from agencies where lower(name) = lower($1))",
                name.strip(),
            )
        except asyncpg.PostgresError as exc:
            raise RepositoryError("failed to check for existing agency") from exc
        return bool(found)

    async def find_taken_slugs(self, base_slug: str) -> set[str]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                "select slug from agencies where slug = $1 or slug like $2",
                base_slug,
                f"{escape_like(base_slug)}-%",
            )
        except asyncpg.PostgresError as exc:
            raise RepositoryError("failed to check agency slugs") from exc
        return {row["slug"] for row in rows}

    async def create_agency(self, fields: dict[str, Any]) -> dict[str, Any]:
        unknown = set(fields) - AGENCY_EDITABLE_FIELDS - {"slug", "verified"}
        if unknown:
            raise RepositoryValidationError(f"unsupported agency fields: {sorted(unknown)}")

        columns = list(fields)
        placeholders = [f"${index}" for index in range(1, len(columns) + 1)]
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"""
                insert into agencies ({", ".join(columns)}, is_active, is_claimed, profile_completion_percentage)
                values ({", ".join(placeholders)}, true, false, 0)
                returning {_AGENCY_EDIT_RETURNING}, slug, is_active, is_claimed, verified,
                  company_size, offers_per_diem, is_union, created_at
                """,
                *fields.values(),
            )
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryConflictError("an agency with this name or slug already exists") from exc
        except asyncpg.PostgresError as exc:
            raise RepositoryError("failed to create agency") from exc
        return dict(row)

    # Claims

    async def get_claim(self, claim_id: str) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"""
                select {_CLAIM_COLUMNS}
                from agency_claim_requests c
                left join agencies a on a.id = c.agency_id
                left join profiles p on p.id = c.user_id
                where c.id = $1::uuid
                """,
                claim_id,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("claim not found") from exc
        if not row:
            raise RepositoryNotFoundError("claim not found")
        return self._claim_row_to_dict(row)

    async def mark_claim_reviewed(
        self,
        *,
        claim_id: str,
        status: str,
        reviewed_by: str,
        reviewed_at: datetime,
        rejection_reason: str | None = None,
    ) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"""
                with updated as (
                  update agency_claim_requests
                  set
                    status = $2,
                    reviewed_by = $3::uuid,
                    reviewed_at = $4,
                    rejection_reason = coalesce($5, rejection_reason),
                    updated_at = now()
                  where id = $1::uuid
                  returning *
                )
                select {_CLAIM_COLUMNS}
                from updated c
                left join agencies a on a.id = c.agency_id
                left join profiles p on p.id = c.user_id
                """,
                claim_id,
                status,
                reviewed_by,
                reviewed_at,
                rejection_reason,
            )
        except asyncpg.PostgresError as exc:
            raise RepositoryError("failed to update claim status") from exc
        if not row:
            raise RepositoryNotFoundError("claim not found")
        return self._claim_row_to_dict(row)

    async def revert_claim_review(self, *, claim_id: str, status: str) -> None:
        pool = await self._get_pool()
        try:
            await pool.execute(
                """
                update agency_claim_requests
                set status = $2, reviewed_by = null, reviewed_at = null, updated_at = now()
                where id = $1::uuid
                """,
                claim_id,
                status,
            )
        except asyncpg.PostgresError as exc:
            raise RepositoryError("failed to revert claim status") from exc

    async def insert_claim_audit_log(
        self,
        *,
        claim_id: str,
        admin_id: str | None,
        action: str,
        notes: str | None = None,
    ) -> None:
        pool = await self._get_pool()
        try:
            await pool.execute(
                """
                insert into agency_claim_audit_log (claim_id, admin_id, action, notes)
                values ($1::uuid, $2::uuid, $3, $4)
                """,
                claim_id,
                admin_id,
                action,
                notes,
            )
        except asyncpg.PostgresError as exc:
            raise RepositoryError("failed to write claim audit log") from exc

    async def list_claims(
        self,
        *,
        status: str | None,
        search: str | None,
        limit: int,
        offset: int,
    ) -> tuple[list[dict[str, Any]], int]:
        pool = await self._get_pool()
        conditions: list[str] = []
        params: list[Any] = []

        def bind(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        if status:
            conditions.append(f"c.status = {bind(status)}")
        normalized_search = self._coerce_text(search)
        if normalized_search:
            token = bind(f"%{escape_like(normalized_search)}%")
            conditions.append(f"(c.business_email ilike {token} or a.name ilike {token})")

        where_sql = " and ".join(conditions) if conditions else "true"
        from_sql = """
            from agency_claim_requests c
            left join agencies a on a.id = c.agency_id
            left join profiles p on p.id = c.user_id
        """
        total = await pool.fetchval(f"select count(*) {from_sql} where {where_sql}", *params)
        limit_token = bind(limit)
        offset_token = bind(offset)
        rows = await pool.fetch(
            f"""
            select {_CLAIM_COLUMNS}
            {from_sql}
            where {where_sql}
            order by c.created_at desc, c.id asc
            limit {limit_token}
            offset {offset_token}
            """,
            *params,
        )
        return [self._claim_row_to_dict(row) for row in rows], int(total or 0)

    async def list_user_claims(self, user_id: str) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select {_CLAIM_COLUMNS}
            from agency_claim_requests c
            left join agencies a on a.id = c.agency_id
            left join profiles p on p.id = c.user_id
            where c.user_id = $1::uuid
            order by c.created_at desc
            """,
            user_id,
        )
        return [self._claim_row_to_dict(row) for row in rows]

    async def has_open_claim(self, *, agency_id: str, user_id: str) -> bool:
        pool = await self._get_pool()
        found = await pool.fetchval(
            """
            select exists (
              select 1 from agency_claim_requests
              where agency_id = $1::uuid and user_id = $2::uuid and status = any($3::text[])
            )
            """,
            agency_id,
            user_id,
            list(OPEN_CLAIM_STATUSES),
        )
        return bool(found)

    async def create_claim(
        self,
        *,
        agency_id: str,
        user_id: str,
        business_email: str,
        phone_number: str,
        position_title: str,
        verification_method: str,
        additional_notes: str | None,
        email_domain_verified: bool,
    ) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                """
                insert into agency_claim_requests (
                  agency_id, user_id, business_email, phone_number, position_title,
                  verification_method, additional_notes, email_domain_verified, status
                )
                values ($1::uuid, $2::uuid, $3, $4, $5, $6, $7, $8, 'pending')
                returning
                  id::text as id,
                  agency_id::text as agency_id,
                  user_id::text as user_id,
                  status,
                  email_domain_verified,
                  created_at
                """,
                agency_id,
                user_id,
                business_email,
                phone_number,
                position_title,
                verification_method,
                additional_notes,
                email_domain_verified,
            )
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryConflictError("pending claim already exists") from exc
        except asyncpg.PostgresError as exc:
            raise RepositoryError("failed to create claim request") from exc
        return dict(row)

    # Labor requests

    async def create_labor_request(
        self,
        *,
        project_name: str,
        company_name: str,
        contact_email: str,
        contact_phone: str,
        additional_details: str | None,
        confirmation_token: str,
        confirmation_token_expires: datetime,
    ) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                """
                insert into labor_requests (
                  project_name, company_name, contact_email, contact_phone, additional_details,
                  confirmation_token, confirmation_token_expires, status
                )
                values ($1, $2, $3, $4, $5, $6, $7, 'pending')
                returning id::text as id, confirmation_token, created_at
                """,
                project_name,
                company_name,
                contact_email,
                contact_phone,
                additional_details,
                confirmation_token,
                confirmation_token_expires,
            )
        except asyncpg.PostgresError as exc:
            raise RepositoryError("failed to create labor request") from exc
        return dict(row)

    async def create_labor_request_crafts(
        self,
        *,
        labor_request_id: str,
        crafts: list[dict[str, Any]],
    ) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        created: list[dict[str, Any]] = []
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    for craft in crafts:
                        row = await conn.fetchrow(
                            """
                            insert into labor_request_crafts (
                              labor_request_id, trade_id, region_id, experience_level, worker_count,
                              start_date, duration_days, hours_per_week, notes,
                              pay_rate_min, pay_rate_max, per_diem_rate
                            )
                            values ($1::uuid, $2::uuid, $3::uuid, $4, $5, $6, $7, $8, $9, $10, $11, $12)
                            returning id::text as id, trade_id::text as trade_id, region_id::text as region_id
                            """,
                            labor_request_id,
                            craft["trade_id"],
                            craft["region_id"],
                            craft["experience_level"],
                            craft["worker_count"],
                            craft["start_date"],
                            craft["duration_days"],
                            craft["hours_per_week"],
                            craft.get("notes"),
                            craft.get("pay_rate_min"),
                            craft.get("pay_rate_max"),
                            craft.get("per_diem_rate"),
                        )
                        created.append(dict(row))
        except asyncpg.PostgresError as exc:
            raise RepositoryError("failed to create labor request crafts") from exc
        return created

    async def delete_labor_request(self, labor_request_id: str) -> None:
        pool = await self._get_pool()
        try:
            await pool.execute("delete from labor_requests where id = $1::uuid", labor_request_id)
        except asyncpg.PostgresError as exc:
            raise RepositoryError("failed to delete labor request") from exc

    async def get_labor_request_by_token(self, token: str) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                """
                select
                  lr.id::text as id,
                  lr.project_name,
                  lr.company_name,
                  lr.contact_email,
                  lr.contact_phone,
                  lr.created_at,
                  lr.confirmation_token_expires
                from labor_requests lr
                where lr.confirmation_token = $1
                """,
                token,
            )
            if not row:
                raise RepositoryNotFoundError("labor request not found")
            crafts = await pool.fetch(
                """
                select
                  c.id::text as id,
                  t.name as craft_name,
                  (
                    select count(*)
                    from labor_request_notifications n
                    where n.labor_request_craft_id = c.id
                  ) as matches
                from labor_request_crafts c
                left join trades t on t.id = c.trade_id
                where c.labor_request_id = $1::uuid
                order by c.created_at asc, c.id asc
                """,
                row["id"],
            )
        except asyncpg.PostgresError as exc:
            raise RepositoryError("failed to load labor request") from exc

        labor_request = dict(row)
        labor_request["crafts"] = [
            {"craft_name": craft["craft_name"], "matches": int(craft["matches"] or 0)} for craft in crafts
        ]
        return labor_request

    async def match_agencies(self, *, trade_id: str, region_id: str) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                """
                select a.id::text as id, a.name
                from agencies a
                where a.is_active = true
                  and exists (select 1 from agency_trades at where at.agency_id = a.id and at.trade_id = $1::uuid)
                  and exists (select 1 from agency_regions ar where ar.agency_id = a.id and ar.region_id = $2::uuid)
                order by a.name asc
                """,
                trade_id,
                region_id,
            )
        except asyncpg.PostgresError as exc:
            raise RepositoryError("failed to match agencies") from exc
        return [dict(row) for row in rows]

    async def create_labor_request_notifications(
        self,
        *,
        labor_request_id: str,
        craft_id: str,
        agency_ids: list[str],
    ) -> int:
        if not agency_ids:
            return 0
        pool = await self._get_pool()
        try:
            await pool.executemany(
                """
                insert into labor_request_notifications (labor_request_id, labor_request_craft_id, agency_id, status)
                values ($1::uuid, $2::uuid, $3::uuid, 'pending')
                """,
                [(labor_request_id, craft_id, agency_id) for agency_id in agency_ids],
            )
        except asyncpg.PostgresError as exc:
            raise RepositoryError("failed to create labor request notifications") from exc
        return len(agency_ids)

    async def list_agency_labor_requests(
        self,
        *,
        agency_id: str,
        status: str | None,
        search: str | None,
    ) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        conditions = ["n.agency_id = $1::uuid"]
        params: list[Any] = [agency_id]

        def bind(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        if status:
            conditions.append(f"n.status = {bind(status)}")
        normalized_search = self._coerce_text(search)
        if normalized_search:
            token = bind(f"%{escape_like(normalized_search)}%")
            conditions.append(f"(lr.project_name ilike {token} or lr.company_name ilike {token})")

        rows = await pool.fetch(
            f"""
            select
              n.id::text as id,
              n.status,
              n.sent_at,
              n.viewed_at,
              n.responded_at,
              n.created_at,
              lr.id::text as labor_request_id,
              lr.project_name,
              lr.company_name,
              lr.contact_email,
              lr.contact_phone,
              lr.additional_details,
              lr.created_at as request_created_at,
              c.id::text as craft_id,
              c.experience_level,
              c.worker_count,
              c.start_date,
              c.duration_days,
              c.hours_per_week,
              c.notes as craft_notes,
              t.name as trade_name,
              r.name as region_name,
              r.state_code
            from labor_request_notifications n
            join labor_requests lr on lr.id = n.labor_request_id
            join labor_request_crafts c on c.id = n.labor_request_craft_id
            join trades t on t.id = c.trade_id
            join regions r on r.id = c.region_id
            where {" and ".join(conditions)}
            order by n.created_at desc
            """,
            *params,
        )
        return [self._inbox_row_to_dict(row) for row in rows]

    async def update_notification_status(
        self,
        *,
        agency_id: str,
        notification_id: str,
        status: str,
    ) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                """
                update labor_request_notifications
                set
                  status = $3,
                  viewed_at = case when $3 in ('viewed', 'responded') then coalesce(viewed_at, now()) else viewed_at end,
                  responded_at = case when $3 = 'responded' then coalesce(responded_at, now()) else responded_at end
                where id = $1::uuid and agency_id = $2::uuid
                returning id::text as id, status, viewed_at, responded_at
                """,
                notification_id,
                agency_id,
                status,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("notification not found") from exc
        except pg_exc.CheckViolationError as exc:
            raise RepositoryConflictError("notification has not been delivered yet") from exc
        if not row:
            raise RepositoryNotFoundError("notification not found")
        return dict(row)

    async def list_pending_notifications(self, *, limit: int) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select
              n.id::text as id,
              n.labor_request_id::text as labor_request_id,
              n.labor_request_craft_id::text as craft_id,
              n.agency_id::text as agency_id,
              n.created_at,
              a.name as agency_name,
              a.slug as agency_slug,
              a.email as agency_email,
              lr.project_name,
              lr.company_name,
              lr.contact_email,
              lr.contact_phone,
              lr.additional_details,
              c.experience_level,
              c.worker_count,
              c.start_date,
              c.duration_days,
              c.hours_per_week,
              c.notes as craft_notes,
              c.pay_rate_min,
              c.pay_rate_max,
              c.per_diem_rate,
              t.name as trade_name,
              r.name as region_name,
              r.state_code
            from labor_request_notifications n
            join agencies a on a.id = n.agency_id
            join labor_requests lr on lr.id = n.labor_request_id
            join labor_request_crafts c on c.id = n.labor_request_craft_id
            join trades t on t.id = c.trade_id
            join regions r on r.id = c.region_id
            where n.status = 'pending'
            order by n.created_at asc, n.id asc
            limit $1
            """,
            limit,
        )
        return [self._dispatch_row_to_dict(row) for row in rows]

    async def resolve_notification(
        self,
        *,
        notification_id: str,
        status: str,
        delivery_error: str | None,
    ) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    current = await conn.fetchval(
                        "select status from labor_request_notifications where id = $1::uuid for update",
                        notification_id,
                    )
                    if current is None:
                        raise RepositoryNotFoundError("notification not found")
                    if current != "pending":
                        raise RepositoryConflictError(f"notification already resolved with status: {current}")
                    row = await conn.fetchrow(
                        """
                        update labor_request_notifications
                        set
                          status = $2,
                          sent_at = case when $2 = 'sent' then now() else sent_at end,
                          delivery_error = $3
                        where id = $1::uuid
                        returning id::text as id, status, sent_at, delivery_error
                        """,
                        notification_id,
                        status,
                        delivery_error,
                    )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("notification not found") from exc
        return dict(row)

    # Messaging

    async def list_conversations(
        self,
        *,
        user_id: str,
        unread_only: bool,
        search: str | None,
        limit: int,
        offset: int,
    ) -> tuple[list[dict[str, Any]], int]:
        pool = await self._get_pool()
        params: list[Any] = [user_id]
        conditions: list[str] = []

        def bind(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        if unread_only:
            conditions.append("e.unread_count > 0")
        normalized_search = self._coerce_text(search)
        if normalized_search:
            token = bind(f"%{escape_like(normalized_search)}%")
            conditions.append(
                "exists (select 1 from conversation_participants op join profiles p on p.id = op.user_id "
                f"where op.conversation_id = e.conversation_uuid and op.user_id <> $1::uuid "
                f"and (p.full_name ilike {token} or p.email ilike {token}))"
            )
        where_sql = " and ".join(conditions) if conditions else "true"

        enriched_sql = """
            with enriched as (
              select
                c.id as conversation_uuid,
                c.id::text as id,
                c.context_type,
                c.context_id::text as context_id,
                c.last_message_at,
                c.created_at,
                c.updated_at,
                ag.name as agency_name,
                (
                  select count(*)
                  from messages m
                  where m.conversation_id = c.id
                    and m.deleted_at is null
                    and m.sender_id <> $1::uuid
                    and (mine.last_read_at is null or m.created_at > mine.last_read_at)
                ) as unread_count,
                (
                  select left(m.content, 200)
                  from messages m
                  where m.conversation_id = c.id and m.deleted_at is null
                  order by m.created_at desc
                  limit 1
                ) as last_message_preview,
                coalesce(
                  (
                    select jsonb_agg(
                      jsonb_build_object('id', p.id, 'full_name', p.full_name, 'email', p.email, 'role', p.role)
                      order by p.full_name
                    )
                    from conversation_participants op
                    join profiles p on p.id = op.user_id
                    where op.conversation_id = c.id
                  ),
                  '[]'::jsonb
                ) as participants
              from conversations c
              join conversation_participants mine on mine.conversation_id = c.id and mine.user_id = $1::uuid
              left join agencies ag on c.context_type = 'agency_inquiry' and ag.id = c.context_id
            )
        """
        total = await pool.fetchval(f"{enriched_sql} select count(*) from enriched e where {where_sql}", *params)
        limit_token = bind(limit)
        offset_token = bind(offset)
        rows = await pool.fetch(
            f"""
            {enriched_sql}
            select * from enriched e
            where {where_sql}
            order by e.last_message_at desc nulls last, e.id asc
            limit {limit_token}
            offset {offset_token}
            """,
            *params,
        )
        return [self._conversation_row_to_dict(row) for row in rows], int(total or 0)

    async def create_conversation(
        self,
        *,
        user_id: str,
        recipient_id: str,
        context_type: str,
        context_id: str | None,
        initial_message: str,
    ) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    recipient = await conn.fetchval("select id::text from profiles where id = $1::uuid", recipient_id)
                    if recipient is None:
                        raise RepositoryNotFoundError("recipient not found")

                    conversation_id = await conn.fetchval(
                        """
                        select c.id::text
                        from conversations c
                        join conversation_participants me on me.conversation_id = c.id and me.user_id = $1::uuid
                        join conversation_participants them on them.conversation_id = c.id and them.user_id = $2::uuid
                        where c.context_type = $3 and c.context_id is not distinct from $4::uuid
                        order by c.created_at asc
                        limit 1
                        """,
                        user_id,
                        recipient_id,
                        context_type,
                        context_id,
                    )
                    created = conversation_id is None
                    if created:
                        conversation_id = await conn.fetchval(
                            """
                            insert into conversations (context_type, context_id)
                            values ($1, $2::uuid)
                            returning id::text
                            """,
                            context_type,
                            context_id,
                        )
                        await conn.execute(
                            """
                            insert into conversation_participants (conversation_id, user_id)
                            values ($1::uuid, $2::uuid), ($1::uuid, $3::uuid)
                            """,
                            conversation_id,
                            user_id,
                            recipient_id,
                        )

                    message = await self._insert_message(
                        conn,
                        conversation_id=conversation_id,
                        sender_id=user_id,
                        content=initial_message,
                    )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("recipient not found") from exc
        except pg_exc.ForeignKeyViolationError as exc:
            raise RepositoryValidationError("conversation context does not exist") from exc

        conversation = await self.get_conversation(conversation_id=conversation_id, user_id=user_id)
        return {"conversation": conversation, "message": message, "created": created}

    async def get_conversation(self, *, conversation_id: str, user_id: str) -> dict[str, Any]:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            select
              c.id::text as id,
              c.context_type,
              c.context_id::text as context_id,
              c.last_message_at,
              c.created_at,
              c.updated_at,
              ag.name as agency_name,
              mine.last_read_at
            from conversations c
            join conversation_participants mine on mine.conversation_id = c.id and mine.user_id = $2::uuid
            left join agencies ag on c.context_type = 'agency_inquiry' and ag.id = c.context_id
            where c.id = $1::uuid
            """,
            conversation_id,
            user_id,
        )
        if not row:
            raise RepositoryNotFoundError("conversation not found")
        conversation = dict(row)
        conversation["participants"] = await self.list_conversation_participants(conversation_id)
        return conversation

    async def list_conversation_participants(self, conversation_id: str) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select
              p.id::text as id,
              p.full_name,
              p.email,
              p.role,
              cp.joined_at,
              cp.last_read_at
            from conversation_participants cp
            join profiles p on p.id = cp.user_id
            where cp.conversation_id = $1::uuid
            order by cp.joined_at asc
            """,
            conversation_id,
        )
        return [dict(row) for row in rows]

    async def is_participant(self, *, conversation_id: str, user_id: str) -> bool:
        pool = await self._get_pool()
        found = await pool.fetchval(
            """
            select exists (
              select 1 from conversation_participants
              where conversation_id = $1::uuid and user_id = $2::uuid
            )
            """,
            conversation_id,
            user_id,
        )
        return bool(found)

    async def list_messages(
        self,
        *,
        conversation_id: str,
        before: str | None,
        limit: int,
    ) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        params: list[Any] = [conversation_id]
        cursor_sql = ""
        if before:
            params.append(before)
            cursor_sql = "and m.created_at < (select created_at from messages where id = $2::uuid)"
        params.append(limit)
        try:
            rows = await pool.fetch(
                f"""
                select
                  m.id::text as id,
                  m.conversation_id::text as conversation_id,
                  m.sender_id::text as sender_id,
                  case when m.deleted_at is null then m.content else null end as content,
                  m.created_at,
                  m.edited_at,
                  m.deleted_at,
                  p.full_name as sender_name
                from messages m
                left join profiles p on p.id = m.sender_id
                where m.conversation_id = $1::uuid {cursor_sql}
                order by m.created_at desc, m.id desc
                limit ${len(params)}
                """,
                *params,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryValidationError("invalid message cursor") from exc
        return [dict(row) for row in rows]

    async def mark_conversation_read(self, *, conversation_id: str, user_id: str) -> datetime:
        pool = await self._get_pool()
        try:
            last_read_at = await pool.fetchval(
                """
                update conversation_participants
                set last_read_at = now()
                where conversation_id = $1::uuid and user_id = $2::uuid
                returning last_read_at
                """,
                conversation_id,
                user_id,
            )
        except asyncpg.PostgresError as exc:
            raise RepositoryError("failed to update read marker") from exc
        if last_read_at is None:
            raise RepositoryNotFoundError("conversation not found")
        return last_read_at

    async def insert_message(self, *, conversation_id: str, sender_id: str, content: str) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    return await self._insert_message(
                        conn,
                        conversation_id=conversation_id,
                        sender_id=sender_id,
                        content=content,
                    )
        except asyncpg.PostgresError as exc:
            raise RepositoryError("failed to send message") from exc

    async def _insert_message(
        self,
        conn: asyncpg.Connection,
        *,
        conversation_id: str,
        sender_id: str,
        content: str,
    ) -> dict[str, Any]:
        row = await conn.fetchrow(
            """
            insert into messages (conversation_id, sender_id, content)
            values ($1::uuid, $2::uuid, $3)
            returning
              id::text as id,
              conversation_id::text as conversation_id,
              sender_id::text as sender_id,
              content,
              created_at,
              edited_at,
              deleted_at
            """,
            conversation_id,
            sender_id,
            content,
        )
        await conn.execute(
            "update conversations set last_message_at = $2, updated_at = now() where id = $1::uuid",
            conversation_id,
            row["created_at"],
        )
        return dict(row)

    async def get_message(self, message_id: str) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                """
                select
                  id::text as id,
                  conversation_id::text as conversation_id,
                  sender_id::text as sender_id,
                  content,
                  created_at,
                  edited_at,
                  deleted_at
                from messages
                where id = $1::uuid
                """,
                message_id,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("message not found") from exc
        if not row:
            raise RepositoryNotFoundError("message not found")
        return dict(row)

    async def edit_message(self, *, message_id: str, content: str) -> dict[str, Any]:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            update messages
            set content = $2, edited_at = now()
            where id = $1::uuid and deleted_at is null
            returning
              id::text as id,
              conversation_id::text as conversation_id,
              sender_id::text as sender_id,
              content,
              created_at,
              edited_at,
              deleted_at
            """,
            message_id,
            content,
        )
        if not row:
            raise RepositoryNotFoundError("message not found")
        return dict(row)

    async def soft_delete_message(self, message_id: str) -> dict[str, Any]:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            update messages
            set deleted_at = coalesce(deleted_at, now())
            where id = $1::uuid
            returning id::text as id, conversation_id::text as conversation_id, deleted_at
            """,
            message_id,
        )
        if not row:
            raise RepositoryNotFoundError("message not found")
        return dict(row)

    async def get_unread_counts(self, user_id: str) -> dict[str, int]:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            select
              coalesce(sum(unread), 0)::int as total_unread,
              (count(*) filter (where unread > 0))::int as conversations_with_unread
            from (
              select (
                select count(*)
                from messages m
                where m.conversation_id = cp.conversation_id
                  and m.deleted_at is null
                  and m.sender_id <> cp.user_id
                  and (cp.last_read_at is null or m.created_at > cp.last_read_at)
              ) as unread
              from conversation_participants cp
              where cp.user_id = $1::uuid
            ) counts
            """,
            user_id,
        )
        return {
            "total_unread": int(row["total_unread"]) if row else 0,
            "conversations_with_unread": int(row["conversations_with_unread"]) if row else 0,
        }

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("SD_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @classmethod
    def _agency_row_to_dict(cls, row: asyncpg.Record) -> dict[str, Any]:
        agency = {key: row[key] for key in row.keys() if key not in {"trades", "regions"}}
        agency["rating"] = cls._coerce_float(row["rating"])
        agency["trades"] = cls._coerce_json_list(row["trades"])
        agency["regions"] = cls._coerce_json_list(row["regions"])
        return agency

    @staticmethod
    def _admin_agency_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        agency = {key: row[key] for key in row.keys() if key not in {"owner_email", "owner_full_name"}}
        agency["owner_profile"] = (
            {"email": row["owner_email"], "full_name": row["owner_full_name"]} if row["claimed_by"] else None
        )
        return agency

    @staticmethod
    def _claim_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        agency = None
        if row["agency_name"] is not None:
            agency = {
                "id": row["agency_id"],
                "name": row["agency_name"],
                "slug": row["agency_slug"],
                "logo_url": row["agency_logo_url"],
                "website": row["agency_website"],
            }
        user = None
        if row["user_email"] is not None or row["user_full_name"] is not None:
            user = {"id": row["user_id"], "full_name": row["user_full_name"], "email": row["user_email"]}
        return {
            "id": row["id"],
            "agency_id": row["agency_id"],
            "user_id": row["user_id"],
            "business_email": row["business_email"],
            "phone_number": row["phone_number"],
            "position_title": row["position_title"],
            "verification_method": row["verification_method"],
            "additional_notes": row["additional_notes"],
            "status": row["status"],
            "reviewed_by": row["reviewed_by"],
            "reviewed_at": row["reviewed_at"],
            "rejection_reason": row["rejection_reason"],
            "email_domain_verified": bool(row["email_domain_verified"]),
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
            "agency": agency,
            "user": user,
        }

    @staticmethod
    def _inbox_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "status": row["status"],
            "sent_at": row["sent_at"],
            "viewed_at": row["viewed_at"],
            "responded_at": row["responded_at"],
            "created_at": row["created_at"],
            "labor_request": {
                "id": row["labor_request_id"],
                "project_name": row["project_name"],
                "company_name": row["company_name"],
                "contact_email": row["contact_email"],
                "contact_phone": row["contact_phone"],
                "additional_details": row["additional_details"],
                "created_at": row["request_created_at"],
            },
            "craft": {
                "id": row["craft_id"],
                "experience_level": row["experience_level"],
                "worker_count": row["worker_count"],
                "start_date": row["start_date"],
                "duration_days": row["duration_days"],
                "hours_per_week": row["hours_per_week"],
                "notes": row["craft_notes"],
                "trade": {"name": row["trade_name"]},
                "region": {"name": row["region_name"], "state_code": row["state_code"]},
            },
        }

    @classmethod
    def _dispatch_row_to_dict(cls, row: asyncpg.Record) -> dict[str, Any]:
        start_date = row["start_date"]
        return {
            "id": row["id"],
            "labor_request_id": row["labor_request_id"],
            "craft_id": row["craft_id"],
            "agency_id": row["agency_id"],
            "created_at": row["created_at"],
            "agency": {"name": row["agency_name"], "slug": row["agency_slug"], "email": row["agency_email"]},
            "labor_request": {
                "project_name": row["project_name"],
                "company_name": row["company_name"],
                "contact_email": row["contact_email"],
                "contact_phone": row["contact_phone"],
                "additional_details": row["additional_details"],
            },
            "craft": {
                "trade_name": row["trade_name"],
                "region_name": row["region_name"],
                "state_code": row["state_code"],
                "experience_level": row["experience_level"],
                "worker_count": row["worker_count"],
                "start_date": start_date.isoformat() if isinstance(start_date, date) else start_date,
                "duration_days": row["duration_days"],
                "hours_per_week": row["hours_per_week"],
                "notes": row["craft_notes"],
                "pay_rate_min": cls._coerce_float(row["pay_rate_min"]),
                "pay_rate_max": cls._coerce_float(row["pay_rate_max"]),
                "per_diem_rate": cls._coerce_float(row["per_diem_rate"]),
            },
        }

    @classmethod
    def _conversation_row_to_dict(cls, row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "context_type": row["context_type"],
            "context_id": row["context_id"],
            "last_message_at": row["last_message_at"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
            "agency_name": row["agency_name"],
            "unread_count": int(row["unread_count"] or 0),
            "last_message_preview": row["last_message_preview"],
            "participants": cls._coerce_json_list(row["participants"]),
        }

    @staticmethod
    def _coerce_text(value: Any) -> str | None:
        if value is None:
            return None
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return str(value)

    @staticmethod
    def _coerce_float(value: Any) -> float | None:
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _coerce_json_list(value: Any) -> list[dict[str, Any]]:
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                return []
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict)]


@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
