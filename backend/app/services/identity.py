"""
身份解析（Identity Resolver）

服务商可能用多个标识指代同一用户：主 ID、迁移前的 original ID、
账号合并/转移产生的 alias 列表。这些标识被当作一个集合逐个探测，
第一个命中的本地用户即为规范用户。顺序只影响性能，不影响正确性。
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from sqlmodel import Session

from app import crud

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Resolved:
    user_id: int
    matched_id: str


@dataclass(frozen=True)
class NotFound:
    candidates: list[str]


ResolveResult = Resolved | NotFound


def candidate_ids(*groups: str | Iterable[str] | None) -> list[str]:
    """
    按出现顺序展开并去重候选标识

    空值与空字符串被丢弃，例如:
        candidate_ids("a", None, ["b", "a", ""]) == ["a", "b"]
    """
    seen: set[str] = set()
    result: list[str] = []
    for group in groups:
        if group is None:
            continue
        items = [group] if isinstance(group, str) else list(group)
        for item in items:
            value = str(item).strip() if item is not None else ""
            if value and value not in seen:
                seen.add(value)
                result.append(value)
    return result


class IdentityResolver:
    """把服务商标识集合解析为本地用户 ID"""

    def resolve(self, session: Session, candidates: list[str]) -> ResolveResult:
        for candidate in candidates:
            user = crud.find_user_by_external_id(session=session, candidate=candidate)
            if user is not None:
                if candidate != candidates[0]:
                    logger.info("Resolved user %s via secondary identifier %s", user.id, candidate)
                return Resolved(user_id=user.id, matched_id=candidate)
        logger.warning("No local user matches identifiers %s", candidates)
        return NotFound(candidates=list(candidates))
