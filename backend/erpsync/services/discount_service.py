"""
Discount Code Service

Mirrors remote customer cards into DiscountCode rows.

MODES (selection predicate only; the write itself is identical):
- import_new       create codes that do not exist yet, leave the rest
- update_existing  update codes that exist, never create
- full_sync        create or update everything
- force_import     same as full_sync, and stamps forced_at / description

The remote row always wins: percent, holder data, date of birth, deleted
flag, external id and the allowed phone list are overwritten on every
create/update.
"""
from __future__ import annotations

import re
from datetime import date
from typing import Iterable

from flask import current_app
from sqlalchemy import func

from ..config import Config
from ..extensions import db
from ..models import DiscountCode, SyncRun
from erpsync.time_utils import parse_ymd, to_utc_z, utcnow
from . import audit_service
from .gateway import clean_string, normalize_date, normalize_discount, to_bool

MODE_IMPORT_NEW = "import_new"
MODE_UPDATE_EXISTING = "update_existing"
MODE_FULL_SYNC = "full_sync"
MODE_FORCE_IMPORT = "force_import"
MODES = (MODE_IMPORT_NEW, MODE_UPDATE_EXISTING, MODE_FULL_SYNC, MODE_FORCE_IMPORT)

_WHITESPACE_RE = re.compile(r"\s+")
_CODE_CHARS_RE = re.compile(r"[^a-z0-9_-]")
_PHONE_SPLIT_RE = re.compile(r"[,;/]")


def format_code(raw: str) -> str:
    """Normalize a remote CardCode: trim, lowercase, whitespace to '-', keep [a-z0-9_-]."""
    code = _WHITESPACE_RE.sub("-", (raw or "").strip().lower())
    return _CODE_CHARS_RE.sub("", code)


def normalize_phones(mobile: str) -> list[str]:
    """Distinct dialable numbers from a mobile field ("+995 555-12-34; 599 000000")."""
    phones = set()
    for part in _PHONE_SPLIT_RE.split(mobile or ""):
        part = part.strip()
        digits = re.sub(r"\D", "", part)
        if not digits:
            continue
        phones.add(("+" if part.startswith("+") else "") + digits)
    return sorted(phones)


def _wants(mode: str, exists: bool) -> bool:
    if mode == MODE_IMPORT_NEW:
        return not exists
    if mode == MODE_UPDATE_EXISTING:
        return exists
    return True


def apply_card(code: DiscountCode, card: dict, *, is_update: bool, force: bool) -> None:
    """Overwrite a code from a remote card row; audits percent changes on update."""
    old_percent = code.percent_amount
    new_percent = normalize_discount(card.get("DiscountPercentage"))
    holder = clean_string(card.get("Name"))

    code.percent_amount = new_percent
    code.holder_name = holder
    code.external_id = clean_string(card.get("Inn")) or None
    code.mobile = clean_string(card.get("MobileNumber"))
    code.date_of_birth = normalize_date(card.get("DateOfBirth")) or None
    code.deleted = to_bool(card.get("IsDeleted"))
    code.allowed_phones = normalize_phones(code.mobile)
    code.managed = True

    now = utcnow()
    code.synced_at = now
    if force:
        code.forced_at = now
    if force or not is_update:
        code.description = f"Synchronized discount card - {holder}"

    db.session.flush()

    if is_update and old_percent != new_percent:
        audit_service.log_change(
            entity_type=audit_service.ENTITY_DISCOUNT_CODE,
            entity_id=code.id,
            entity_key=code.code,
            entity_name=holder,
            change_type="discount",
            old_value=old_percent,
            new_value=new_percent,
            message=f"Discount {old_percent}% → {new_percent}%" + (" (forced)" if force else ""),
        )


def upsert_codes(cards: Iterable[dict], mode: str) -> dict[str, int]:
    """
    Apply remote cards under one of MODES.

    Returns {created, updated, total_remote}. Cards without CardCode are
    skipped; a card that fails to persist is logged and skipped.
    """
    if mode not in MODES:
        raise ValueError(f"Unknown discount sync mode: {mode}")

    cards = list(cards)
    force = mode == MODE_FORCE_IMPORT
    created = 0
    updated = 0
    errors = 0

    for card in cards:
        raw = clean_string(card.get("CardCode"))
        if not raw:
            continue
        code_value = format_code(raw)
        if not code_value:
            continue

        existing = db.session.query(DiscountCode).filter_by(code=code_value).one_or_none()
        exists = existing is not None
        if not _wants(mode, exists):
            continue

        nested = db.session.begin_nested()
        try:
            code = existing
            if code is None:
                code = DiscountCode(code=code_value, allowed_phones=[])
                db.session.add(code)
            apply_card(code, card, is_update=exists, force=force)
            nested.commit()
        except Exception as exc:  # noqa: BLE001
            nested.rollback()
            errors += 1
            current_app.logger.warning("Discount code %s failed: %s", code_value, exc)
            continue

        if exists:
            updated += 1
        else:
            created += 1

    db.session.commit()
    current_app.logger.info(
        "Discount sync (%s) completed: created=%d updated=%d errors=%d remote=%d",
        mode, created, updated, errors, len(cards),
    )
    return {"created": created, "updated": updated, "total_remote": len(cards)}


def _birthday_candidates(dob: date, year: int) -> list[date]:
    if dob.month == 2 and dob.day == 29:
        try:
            return [date(year, 2, 29)]
        except ValueError:
            return [date(year, 2, 28), date(year, 3, 1)]
    return [date(year, dob.month, dob.day)]


def is_in_birthday_window(dob: str | None, today: date | None = None) -> bool:
    """True when today is the birthday or one day either side of it (across new year too)."""
    born = parse_ymd(dob)
    if born is None:
        return False
    today = today or utcnow().date()
    for year in (today.year - 1, today.year, today.year + 1):
        for candidate in _birthday_candidates(born, year):
            if abs((today - candidate).days) <= 1:
                return True
    return False


def effective_discount(
    code: DiscountCode, today: date | None = None, *, birthday_percent: int = Config.ERPSYNC_BIRTHDAY_DISCOUNT
) -> int:
    """Percent a code grants right now: deleted beats birthday, birthday beats the synced amount."""
    if code.deleted:
        return 0
    if is_in_birthday_window(code.date_of_birth, today):
        return birthday_percent
    return code.percent_amount or 0


def discount_stats(today: date | None = None) -> dict:
    codes = db.session.query(DiscountCode).filter(DiscountCode.managed.is_(True)).all()
    active = 0
    deleted = 0
    birthday = 0
    for code in codes:
        if code.deleted:
            deleted += 1
            continue
        active += 1
        if is_in_birthday_window(code.date_of_birth, today):
            birthday += 1

    last_run = (
        db.session.query(SyncRun)
        .filter(SyncRun.sync_type == "code", SyncRun.success.is_(True))
        .order_by(SyncRun.finished_at.desc(), SyncRun.id.desc())
        .first()
    )
    last_sync = last_run.finished_at if last_run else db.session.query(func.max(DiscountCode.synced_at)).scalar()

    return {
        "total": len(codes),
        "active": active,
        "deleted": deleted,
        "birthday": birthday,
        "last_sync": to_utc_z(last_sync),
    }


def find_code(raw: str) -> DiscountCode | None:
    return db.session.query(DiscountCode).filter_by(code=format_code(raw)).one_or_none()

