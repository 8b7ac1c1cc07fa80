#!/usr/bin/env python3
"""
GTA - bindings (library-only)

Provides:
  - format_role(role) / format_member(identity)
  - new_binding_id() / build_binding(role, member, ttl)
  - is_temporary(binding) / expiration_of(binding)
  - find_temporary(policy, member)
  - remove_member(policy, role, binding_id, member)
  - strip_matches(policy, matches)

Used by gcp_iam.GCPProvider. Everything here works on in-memory
google.iam.v1 Policy messages and never talks to the network.
"""
from __future__ import annotations

import re
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from google.iam.v1 import policy_pb2
from google.type import expr_pb2

# Marks bindings created by this tool
BINDING_TITLE_PREFIX = "gta_temporary_access"
# Conditional bindings need policy version 3
POLICY_VERSION = 3
ROLE_PREFIX = "roles/"
CUSTOM_ROLE_PREFIXES = ("projects/", "organizations/")
MEMBER_TYPES = ("user:", "serviceAccount:", "group:", "domain:")
SERVICE_ACCOUNT_SUFFIX = ".gserviceaccount.com"

EXPRESSION_TEMPLATE = "request.time < timestamp('{}')"
_EXPIRY_RE = re.compile(r"request\.time\s*<\s*timestamp\(\s*['\"]([^'\"]+)['\"]\s*\)")


# ---------- Records ----------

@dataclass(frozen=True)
class GrantedRole:
    """A binding created by this process."""

    role: str
    binding_id: str


@dataclass(frozen=True)
class TemporaryBinding:
    """One (binding, member) pair found by a scan of the policy."""

    role: str
    member: str
    binding_id: str
    expires: str

    @property
    def expires_at(self) -> Optional[datetime]:
        return parse_rfc3339(self.expires)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        expires_at = self.expires_at
        if expires_at is None:
            return False
        return expires_at <= (now or datetime.now(timezone.utc))


# ---------- Helper functions ----------

def rfc3339(dt: datetime) -> str:
    """Return dt in UTC as RFC 3339 with a 'Z' suffix, to the second."""
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_rfc3339(text: str) -> Optional[datetime]:
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None


def format_role(role: str) -> str:
    """Make sure the role has the 'roles/' prefix (custom roles pass through)."""
    if role.startswith(ROLE_PREFIX) or role.startswith(CUSTOM_ROLE_PREFIXES):
        return role
    return ROLE_PREFIX + role


def format_member(identity: str) -> str:
    """Turn an email into a member string like 'user:alice@example.com'."""
    if identity.startswith(MEMBER_TYPES):
        return identity
    if identity.endswith(SERVICE_ACCOUNT_SUFFIX):
        return f"serviceAccount:{identity}"
    return f"user:{identity}"


_last_binding_ns = 0


def new_binding_id(clock: Callable[[], int] = time.time_ns) -> str:
    """Return a condition title that is unique within this process."""
    global _last_binding_ns
    ns = clock()
    # two grants can land on the same clock tick
    if ns <= _last_binding_ns:
        ns = _last_binding_ns + 1
    _last_binding_ns = ns
    return f"{BINDING_TITLE_PREFIX}_{ns}"


def build_binding(role: str, member: str, ttl: timedelta,
                  now: Optional[datetime] = None) -> policy_pb2.Binding:
    """Create a conditional binding for member that expires after ttl."""
    now = now or datetime.now(timezone.utc)
    return policy_pb2.Binding(
        role=role,
        members=[member],
        condition=expr_pb2.Expr(
            title=new_binding_id(),
            description=f"Temporary access granted by GTA tool at {rfc3339(now)}",
            expression=EXPRESSION_TEMPLATE.format(rfc3339(now + ttl)),
        ),
    )


def binding_key(binding: policy_pb2.Binding) -> Optional[Tuple[str, str]]:
    if not binding.HasField("condition"):
        return None
    return binding.role, binding.condition.title


def is_temporary(binding: policy_pb2.Binding) -> bool:
    """Return True if the binding was created by this tool."""
    return (binding.HasField("condition")
            and binding.condition.title.startswith(BINDING_TITLE_PREFIX))


def expiration_of(binding: policy_pb2.Binding) -> str:
    """Pull the timestamp out of the condition; fall back to the raw expression."""
    expression = binding.condition.expression
    match = _EXPIRY_RE.search(expression)
    return match.group(1) if match else expression


# ---------- Scans ----------

def find_temporary(policy: policy_pb2.Policy,
                   member: Optional[str] = None) -> List[TemporaryBinding]:
    """List every (temporary binding, member) pair, optionally for one member."""
    found: List[TemporaryBinding] = []
    for binding in policy.bindings:
        if not is_temporary(binding):
            continue
        for m in binding.members:
            if member is None or m == member:
                found.append(TemporaryBinding(
                    role=binding.role,
                    member=m,
                    binding_id=binding.condition.title,
                    expires=expiration_of(binding),
                ))
    return found


# ---------- Mutations ----------

def strip_matches(policy: policy_pb2.Policy,
                  matches: Iterable[TemporaryBinding]) -> int:
    """
    Remove each matched member from its binding, dropping bindings left empty.

    Bindings are matched by (role, condition title), and the binding list is
    rebuilt in place, so positions never matter. Returns how many members
    were removed.
    """
    doomed: Dict[Tuple[str, str], Set[str]] = {}
    for match in matches:
        doomed.setdefault((match.role, match.binding_id), set()).add(match.member)

    removed = 0
    rebuilt: List[policy_pb2.Binding] = []
    for binding in policy.bindings:
        kept = policy_pb2.Binding()
        kept.CopyFrom(binding)
        drop = doomed.get(binding_key(binding))
        if drop:
            remaining = [m for m in binding.members if m not in drop]
            removed += len(binding.members) - len(remaining)
            if not remaining:
                continue
            del kept.members[:]
            kept.members.extend(remaining)
        rebuilt.append(kept)

    del policy.bindings[:]
    policy.bindings.extend(rebuilt)
    return removed


def remove_member(policy: policy_pb2.Policy, role: str, binding_id: str,
                  member: str) -> bool:
    """
    Remove member from the binding with this role and condition title.

    Returns False when no such binding exists in the policy.
    """
    key = (role, binding_id)
    if not any(binding_key(b) == key for b in policy.bindings):
        return False
    strip_matches(policy, [TemporaryBinding(role, member, binding_id, "")])
    return True
