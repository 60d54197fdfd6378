# onboarding/services/schema/table_registry.py

import enum
from typing import Any, Dict, List, Literal, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field

class ColumnType(str, enum.Enum):
    SERIAL = "SERIAL"
    BIGSERIAL = "BIGSERIAL"
    INTEGER = "INTEGER"
    BIGINT = "BIGINT"
    VARCHAR = "VARCHAR"
    CHAR = "CHAR"
    TEXT = "TEXT"
    BOOLEAN = "BOOLEAN"
    TIMESTAMP = "TIMESTAMP"
    TIMESTAMPTZ = "TIMESTAMPTZ"
    DATE = "DATE"
    JSONB = "JSONB"
    DECIMAL = "DECIMAL"
    UUID = "UUID"

# Definitions are shared by every tenant and must never be mutated at runtime
_frozen = ConfigDict(frozen=True)

class ColumnDefinition(BaseModel):
    model_config = _frozen

    name: str
    type: ColumnType
    length: Optional[int] = Field(None, gt=0, description="Only honoured for VARCHAR and CHAR.")
    nullable: bool = True
    default: Optional[Any] = None
    unique: bool = False
    primary_key: bool = False

class IndexDefinition(BaseModel):
    model_config = _frozen

    name: str
    columns: Tuple[str, ...]
    unique: bool = False
    method: Optional[Literal["btree", "hash", "gin", "gist"]] = None

class TriggerDefinition(BaseModel):
    model_config = _frozen

    name: str
    event: Literal["INSERT", "UPDATE", "DELETE"]
    timing: Literal["BEFORE", "AFTER"]
    function: str
    condition: Optional[str] = None

class FunctionDefinition(BaseModel):
    """A plpgsql function backing one or more triggers, created inside the tenant schema."""
    model_config = _frozen

    name: str
    returns: str = "TRIGGER"
    language: str = "plpgsql"
    body: str

class TableDefinition(BaseModel):
    model_config = _frozen

    name: str
    columns: Tuple[ColumnDefinition, ...]
    indexes: Tuple[IndexDefinition, ...] = ()
    triggers: Tuple[TriggerDefinition, ...] = ()
    constraints: Tuple[str, ...] = ()

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

# ==============================================================================
# Shared building blocks
# ==============================================================================

STANDARD_TIMESTAMP_COLUMNS: Tuple[ColumnDefinition, ...] = (
    ColumnDefinition(name="created_at", type=ColumnType.TIMESTAMP, default="CURRENT_TIMESTAMP", nullable=False),
    ColumnDefinition(name="updated_at", type=ColumnType.TIMESTAMP, default="CURRENT_TIMESTAMP", nullable=False),
    ColumnDefinition(name="deleted_at", type=ColumnType.TIMESTAMP, nullable=True),
)

UPDATE_UPDATED_AT_FUNCTION = FunctionDefinition(
    name="update_updated_at_column",
    body=(
        "BEGIN\n"
        "    NEW.updated_at = CURRENT_TIMESTAMP;\n"
        "    RETURN NEW;\n"
        "END;"
    ),
)

UPDATED_AT_TRIGGER = TriggerDefinition(
    name="update_updated_at",
    event="UPDATE",
    timing="BEFORE",
    function=UPDATE_UPDATED_AT_FUNCTION.name,
)

# ==============================================================================
# Tenant tables
# ==============================================================================

SHOP_INFO_TABLE = TableDefinition(
    name="shop_info",
    columns=(
        ColumnDefinition(name="id", type=ColumnType.SERIAL, primary_key=True),
        ColumnDefinition(name="shop_code", type=ColumnType.VARCHAR, length=20, nullable=False, unique=True),
        ColumnDefinition(name="shop_domain", type=ColumnType.VARCHAR, length=255, nullable=False),
        ColumnDefinition(name="shop_name", type=ColumnType.VARCHAR, length=255),
        ColumnDefinition(name="shop_email", type=ColumnType.VARCHAR, length=100),
        ColumnDefinition(name="currency", type=ColumnType.VARCHAR, length=50),
        ColumnDefinition(name="timezone", type=ColumnType.VARCHAR, length=100),
        ColumnDefinition(name="plan_name", type=ColumnType.VARCHAR, length=50),
        ColumnDefinition(name="access_token", type=ColumnType.TEXT),
        ColumnDefinition(name="is_active", type=ColumnType.BOOLEAN, default=True, nullable=False),
        ColumnDefinition(name="additional_data", type=ColumnType.JSONB),
        *STANDARD_TIMESTAMP_COLUMNS,
    ),
    triggers=(UPDATED_AT_TRIGGER,),
)

PRODUCTS_TABLE = TableDefinition(
    name="products",
    columns=(
        ColumnDefinition(name="id", type=ColumnType.SERIAL, primary_key=True),
        ColumnDefinition(name="shopify_product_id", type=ColumnType.BIGINT, nullable=False, unique=True),
        ColumnDefinition(name="title", type=ColumnType.VARCHAR, length=500, nullable=False),
        ColumnDefinition(name="handle", type=ColumnType.VARCHAR, length=255, nullable=False),
        ColumnDefinition(name="description", type=ColumnType.TEXT),
        ColumnDefinition(name="vendor", type=ColumnType.VARCHAR, length=255),
        ColumnDefinition(name="product_type", type=ColumnType.VARCHAR, length=255),
        ColumnDefinition(name="status", type=ColumnType.VARCHAR, length=50, default="active", nullable=False),
        ColumnDefinition(name="tags", type=ColumnType.TEXT),
        ColumnDefinition(name="price", type=ColumnType.DECIMAL),
        ColumnDefinition(name="compare_at_price", type=ColumnType.DECIMAL),
        ColumnDefinition(name="inventory_quantity", type=ColumnType.INTEGER, default=0, nullable=False),
        ColumnDefinition(name="published_at", type=ColumnType.TIMESTAMP),
        *STANDARD_TIMESTAMP_COLUMNS,
    ),
    indexes=(
        IndexDefinition(name="idx_products_shopify_id", columns=("shopify_product_id",), unique=True),
        IndexDefinition(name="idx_products_handle", columns=("handle",)),
        IndexDefinition(name="idx_products_status", columns=("status",)),
    ),
    triggers=(UPDATED_AT_TRIGGER,),
)

ORDERS_TABLE = TableDefinition(
    name="orders",
    columns=(
        ColumnDefinition(name="id", type=ColumnType.SERIAL, primary_key=True),
        ColumnDefinition(name="shopify_order_id", type=ColumnType.BIGINT, nullable=False, unique=True),
        ColumnDefinition(name="order_number", type=ColumnType.VARCHAR, length=50, nullable=False),
        ColumnDefinition(name="email", type=ColumnType.VARCHAR, length=255),
        ColumnDefinition(name="total_price", type=ColumnType.DECIMAL, nullable=False),
        ColumnDefinition(name="subtotal_price", type=ColumnType.DECIMAL, nullable=False),
        ColumnDefinition(name="total_tax", type=ColumnType.DECIMAL),
        ColumnDefinition(name="currency", type=ColumnType.VARCHAR, length=10, nullable=False),
        ColumnDefinition(name="financial_status", type=ColumnType.VARCHAR, length=50),
        ColumnDefinition(name="fulfillment_status", type=ColumnType.VARCHAR, length=50),
        ColumnDefinition(name="processed_at", type=ColumnType.TIMESTAMP),
        *STANDARD_TIMESTAMP_COLUMNS,
    ),
    indexes=(
        IndexDefinition(name="idx_orders_shopify_id", columns=("shopify_order_id",), unique=True),
        IndexDefinition(name="idx_orders_number", columns=("order_number",)),
        IndexDefinition(name="idx_orders_email", columns=("email",)),
        IndexDefinition(name="idx_orders_status", columns=("financial_status", "fulfillment_status")),
    ),
    triggers=(UPDATED_AT_TRIGGER,),
)

# Version tracking lives next to the tenant tables but is not part of the registry
SCHEMA_INFO_TABLE_NAME = "schema_info"

SCHEMA_INFO_TABLE = TableDefinition(
    name=SCHEMA_INFO_TABLE_NAME,
    columns=(
        ColumnDefinition(name="id", type=ColumnType.SERIAL, primary_key=True),
        ColumnDefinition(name="version", type=ColumnType.VARCHAR, length=50, nullable=False),
        ColumnDefinition(name="description", type=ColumnType.TEXT),
        ColumnDefinition(name="tables", type=ColumnType.JSONB, nullable=False),
        ColumnDefinition(name="created_at", type=ColumnType.TIMESTAMP, default="CURRENT_TIMESTAMP", nullable=False),
    ),
)

DEFAULT_TENANT_TABLES: Tuple[str, ...] = ("shop_info",)

class TableRegistry:
    """
    Ordered, name-keyed catalogue of tenant table definitions.
    Iteration order is registration order, which is also the creation order.
    """
    def __init__(
        self,
        tables: Optional[List[TableDefinition]] = None,
        functions: Optional[List[FunctionDefinition]] = None,
        default_tables: Optional[Tuple[str, ...]] = None,
    ):
        self._tables: Dict[str, TableDefinition] = {}
        self._functions: Dict[str, FunctionDefinition] = {}
        for function in functions or []:
            self.register_function(function)
        for table in tables or []:
            self.register(table)
        self.default_tables: Tuple[str, ...] = tuple(default_tables or ())

    def register(self, table: TableDefinition) -> TableDefinition:
        if table.name in self._tables:
            raise ValueError(f"Table '{table.name}' is already registered.")
        self._tables[table.name] = table
        return table

    def register_function(self, function: FunctionDefinition) -> FunctionDefinition:
        if function.name in self._functions:
            raise ValueError(f"Function '{function.name}' is already registered.")
        self._functions[function.name] = function
        return function

    def get(self, name: str) -> Optional[TableDefinition]:
        return self._tables.get(name)

    def get_function(self, name: str) -> Optional[FunctionDefinition]:
        return self._functions.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._tables

    def names(self) -> List[str]:
        return list(self._tables.keys())

    def resolve(self, names: Optional[List[str]] = None) -> Tuple[List[TableDefinition], List[str]]:
        """
        Splits the requested names into known definitions (in registry order,
        deduplicated) and unknown names (in request order).
        None means the default table set.
        """
        requested = list(self.default_tables) if names is None else list(names)
        wanted = set(requested)
        known = [table for name, table in self._tables.items() if name in wanted]
        unknown: List[str] = []
        for name in requested:
            if name not in self._tables and name not in unknown:
                unknown.append(name)
        return known, unknown

table_registry = TableRegistry(
    tables=[SHOP_INFO_TABLE, PRODUCTS_TABLE, ORDERS_TABLE],
    functions=[UPDATE_UPDATED_AT_FUNCTION],
    default_tables=DEFAULT_TENANT_TABLES,
)
