from __future__ import annotations

from dataclasses import dataclass, field as dataclass_field

from ._core_base import *  # noqa: F401,F403
from ._core_config import *  # noqa: F401,F403


@dataclass(frozen=True)
class PolicyWaiver:
    waiver_id: str
    pattern: re.Pattern[str]
    kinds: tuple[str, ...]
    severity: str
    expires_utc: str | None
    created_utc: str | None
    owner: str | None
    reason: str | None
    ticket: str | None

    def matches(self, entity_path: str, kind: str, severity: str) -> bool:
        if self.severity not in {"any", severity}:
            return False
        if self.kinds and kind not in self.kinds:
            return False
        return self.pattern.search(entity_path) is not None

    def is_expired(self, now: dt.datetime) -> bool:
        if not self.expires_utc:
            return False
        return parse_utc_timestamp(self.expires_utc) < now


@dataclass(frozen=True)
class GovernancePolicy:
    field_rename_severity: str = "ambiguous"
    escalate_ambiguous: bool = False
    severity_overrides: dict[str, str] = dataclass_field(default_factory=dict)
    waivers: tuple[PolicyWaiver, ...] = ()

    def blocking_severities(self) -> set[str]:
        if self.escalate_ambiguous:
            return {"breaking", "ambiguous"}
        return {"breaking"}


def _validate_timestamp(item: dict[str, Any], key: str, label: str) -> str | None:
    raw = item.get(key)
    if raw is None:
        return None
    if not isinstance(raw, str) or not raw:
        raise ConfigError(f"{label}.{key} must be non-empty ISO string")
    try:
        parse_utc_timestamp(raw)
    except ValueError as exc:
        raise ConfigError(f"{label}.{key} invalid ISO timestamp: {raw}") from exc
    return raw


def _optional_text(item: dict[str, Any], key: str) -> str | None:
    value = item.get(key)
    return str(value) if isinstance(value, str) and value else None


def normalize_policy_waivers(
    raw_waivers: Any,
    label: str,
    waiver_requirements: dict[str, Any] | None = None,
) -> list[PolicyWaiver]:
    if raw_waivers is None:
        return []
    if not isinstance(raw_waivers, list):
        raise ConfigError(f"{label}.waivers must be an array when specified")
    requirements = waiver_requirements if isinstance(waiver_requirements, dict) else {}

    out: list[PolicyWaiver] = []
    seen_ids: set[str] = set()
    for idx, item in enumerate(raw_waivers):
        item_label = f"{label}.waivers[{idx}]"
        if not isinstance(item, dict):
            raise ConfigError(f"{item_label} must be an object")
        if not bool(item.get("enabled", True)):
            continue

        waiver_id = str(item.get("id") or f"waiver_{idx}")
        if waiver_id in seen_ids:
            raise ConfigError(f"{item_label}.id '{waiver_id}' is duplicated")
        seen_ids.add(waiver_id)

        severity = str(item.get("severity", "any")).strip().lower()
        if severity not in WAIVER_SEVERITIES:
            raise ConfigError(f"{item_label}.severity must be any/breaking/ambiguous")

        pattern_text = str(item.get("pattern") or "")
        if not pattern_text:
            raise ConfigError(f"{item_label}.pattern must be non-empty")
        try:
            pattern = re.compile(pattern_text)
        except re.error as exc:
            raise ConfigError(f"{item_label}.pattern is invalid regex: {pattern_text} ({exc})") from exc

        kinds_raw = item.get("kinds")
        kinds: tuple[str, ...] = ()
        if kinds_raw is not None:
            if not isinstance(kinds_raw, list) or not all(isinstance(kind, str) and kind for kind in kinds_raw):
                raise ConfigError(f"{item_label}.kinds must be an array of change kind names")
            kinds = tuple(str(kind).upper() for kind in kinds_raw)

        expires_utc = _validate_timestamp(item, "expires_utc", item_label)
        created_utc = _validate_timestamp(item, "created_utc", item_label)
        owner = _optional_text(item, "owner")
        reason = _optional_text(item, "reason")
        ticket = _optional_text(item, "ticket")

        if bool(requirements.get("require_owner")) and not owner:
            raise ConfigError(f"{item_label}.owner is required by waiver_requirements")
        if bool(requirements.get("require_reason")) and not reason:
            raise ConfigError(f"{item_label}.reason is required by waiver_requirements")
        if bool(requirements.get("require_expires_utc")) and not expires_utc:
            raise ConfigError(f"{item_label}.expires_utc is required by waiver_requirements")
        if bool(requirements.get("require_ticket")) and not ticket:
            raise ConfigError(f"{item_label}.ticket is required by waiver_requirements")

        max_ttl_days = requirements.get("max_ttl_days")
        if isinstance(max_ttl_days, int) and not isinstance(max_ttl_days, bool):
            if not created_utc or not expires_utc:
                raise ConfigError(
                    f"{item_label} must include created_utc and expires_utc when max_ttl_days is configured"
                )
            ttl_days = (
                parse_utc_timestamp(expires_utc) - parse_utc_timestamp(created_utc)
            ).total_seconds() / 86400.0
            if ttl_days < 0:
                raise ConfigError(f"{item_label} expires_utc is earlier than created_utc")
            if ttl_days > float(max_ttl_days):
                raise ConfigError(
                    f"{item_label} TTL is {ttl_days:.2f} days and exceeds max_ttl_days={max_ttl_days}"
                )

        out.append(
            PolicyWaiver(
                waiver_id=waiver_id,
                pattern=pattern,
                kinds=kinds,
                severity=severity,
                expires_utc=expires_utc,
                created_utc=created_utc,
                owner=owner,
                reason=reason,
                ticket=ticket,
            )
        )
    return out


def apply_waivers(
    records: list[Any],
    waivers: tuple[PolicyWaiver, ...] | list[PolicyWaiver],
    now: dt.datetime | None = None,
) -> tuple[list[Any], list[dict[str, Any]], list[str]]:
    """Split blocking change records into (kept, waived entries, warnings).

    Records need ``entity_path``, ``kind`` and ``severity`` attributes plus
    ``as_dict()``. Expired waivers never apply and produce a warning.
    """
    moment = now or now_utc()
    kept: list[Any] = []
    waived: list[dict[str, Any]] = []
    warnings: list[str] = []
    for record in records:
        kind_name = getattr(record.kind, "value", record.kind)
        matched = False
        for waiver in waivers:
            if not waiver.matches(record.entity_path, kind_name, record.severity):
                continue
            if waiver.is_expired(moment):
                warnings.append(
                    f"waiver '{waiver.waiver_id}' expired at {waiver.expires_utc} for {record.entity_path}"
                )
                continue
            entry = record.as_dict()
            entry.update(
                {
                    "waiver_id": waiver.waiver_id,
                    "owner": waiver.owner,
                    "reason": waiver.reason,
                    "ticket": waiver.ticket,
                    "expires_utc": waiver.expires_utc,
                }
            )
            waived.append(entry)
            matched = True
            break
        if not matched:
            kept.append(record)
    return kept, waived, warnings
