# onboarding/services/schema/naming.py

import re
from typing import Optional, Set
from onboarding.core.config import settings
from onboarding.services.exceptions import ValidationError

TENANT_CODE_PATTERN = re.compile(r"[A-Za-z0-9]{1,32}")
IDENTIFIER_PATTERN = re.compile(r"[a-z_][a-z0-9_]{0,62}")

# Reserved key words that cannot be used as bare identifiers in PostgreSQL
PG_RESERVED_WORDS: Set[str] = { "all", "analyse", "analyze", "and", "any", "array", "as", "asc", "asymmetric", "authorization", "binary", "both", "case", "cast", "check", "collate", "column", "concurrently", "constraint", "create", "cross", "current_catalog", "current_date", "current_role", "current_time", "current_timestamp", "current_user", "default", "deferrable", "desc", "distinct", "do", "else", "end", "except", "false", "fetch", "for", "foreign", "freeze", "from", "full", "grant", "group", "having", "ilike", "in", "initially", "inner", "intersect", "into", "is", "isnull", "join", "lateral", "leading", "left", "like", "limit", "localtime", "localtimestamp", "natural", "not", "notnull", "null", "offset", "on", "only", "or", "order", "outer", "overlaps", "placing", "primary", "references", "returning", "right", "select", "session_user", "similar", "some", "symmetric", "table", "tablesample", "then", "to", "trailing", "true", "union", "unique", "user", "using", "variadic", "verbose", "when", "where", "window", "with" }

def validate_identifier(name: str, kind: str = "identifier") -> str:
    """Checks a table/column/index/trigger/function name before it reaches any DDL."""
    if not isinstance(name, str) or not IDENTIFIER_PATTERN.fullmatch(name):
        raise ValidationError(
            f"Invalid {kind} '{name}'. Must start with a lowercase letter or underscore "
            f"and contain only lowercase letters, numbers, and underscores (max 63 chars)."
        )
    if name in PG_RESERVED_WORDS:
        raise ValidationError(f"Invalid {kind} '{name}'. It is a reserved PostgreSQL keyword.")
    return name

def schema_name_for(tenant_code: str, prefix: Optional[str] = None) -> str:
    if not isinstance(tenant_code, str) or not TENANT_CODE_PATTERN.fullmatch(tenant_code):
        raise ValidationError(f"Invalid tenant code '{tenant_code}'.")
    prefix = settings.TENANT_SCHEMA_PREFIX if prefix is None else prefix
    return validate_identifier(f"{prefix}{tenant_code.lower()}", kind="schema name")

def trigger_name_for(base: str, table_name: str) -> str:
    return validate_identifier(f"{base}_{table_name}", kind="trigger name")
