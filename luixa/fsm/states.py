START = "START"
IDLE = "IDLE"

# flujo de pedido
AWAITING_CLIENT_PHONE = "AWAITING_CLIENT_PHONE"
AWAITING_SUPPLIER_PHONE = "AWAITING_SUPPLIER_PHONE"
COLLECTING_ITEMS = "COLLECTING_ITEMS"

# correcciones
CORRECTING_CLIENT = "CORRECTING_CLIENT"
CORRECTING_SUPPLIER = "CORRECTING_SUPPLIER"

# consultas
AWAITING_CATALOG_SUPPLIER = "AWAITING_CATALOG_SUPPLIER"
AWAITING_LOOKUP_CODE = "AWAITING_LOOKUP_CODE"
AWAITING_STATUS_CODE = "AWAITING_STATUS_CODE"
AWAITING_CANCEL_CODE = "AWAITING_CANCEL_CODE"
AWAITING_STATS_CLIENT = "AWAITING_STATS_CLIENT"
