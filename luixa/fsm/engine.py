"""Routes each inbound text to the step that should handle it.

A keyword always wins over a pending capture, so the user can jump between
flows at any point. Otherwise the conversation's current state picks the
capture handler. Every handler gets the loaded :class:`ConversationData`,
mutates it and returns the replies; the engine stores the state once per
message.
"""
from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy.orm import Session

from luixa.fsm import states
from luixa.fsm.conversation_state import ConversationData, load_state, reset_state, store_state
from luixa.models.conversation import Conversation
from luixa.services.catalog import format_catalog, list_catalog
from luixa.services.directory import find_client_by_phone, find_supplier_by_phone, normalize_phone
from luixa.services.order_assembler import format_order_summary, submit_order_text
from luixa.services.order_confirmation import abandon_confirmation, confirm_order
from luixa.services.order_parser import normalize
from luixa.services.order_queries import (
    cancel_order,
    client_statistics,
    format_client_statistics,
    format_order_details,
    format_order_status,
    get_order_by_code,
    lookup_order,
    not_found_message,
)

logger = logging.getLogger(__name__)

Handler = Callable[[Session, Conversation, ConversationData, str], "list[str]"]

REGISTER_FLOW = "REGISTER_FLOW"
SAMPLES = "SAMPLES"

GENERIC_ERROR = "⚠️ Ocurrió un error inesperado, intenta de nuevo."

CLIENT_PHONE_PROMPT = "👤 ¿Cuál es tu número de teléfono? (ejemplo: +52 246 123 4567)"
SUPPLIER_PHONE_PROMPT = "🏪 ¿Cuál es el número del proveedor? (ejemplo: +52 246 987 6543)"
ORDER_PROMPT = (
    "🛍️ ¡Perfecto! Ahora escribe tu pedido basándote en el catálogo mostrado. "
    "Puedes ingresar varios productos, un producto por línea.\n\n"
    "*Formato:* cantidad producto talla talla_producto\n\n"
    "*Ejemplo:*\n2 camisetas talla M\n8 pantalones talla 36\n6 calcetines talla unitalla\n\n"
    "💡 *Comandos útiles:*\n"
    '- Escribe "corregir cliente" para cambiar los datos del cliente\n'
    '- Escribe "corregir proveedor" para cambiar los datos del proveedor'
)
HELP_TEXT = (
    "🤖 Puedo ayudarte con:\n"
    "• *pedido*: hacer un nuevo pedido\n"
    "• *catalogo*: ver el catálogo de un proveedor\n"
    "• *buscar pedido*: ver el detalle de un pedido\n"
    "• *consultar estado*: ver el estado de un pedido\n"
    "• *cancelar pedido*: cancelar un pedido\n"
    "• *mis estadisticas*: ver tus estadísticas de compra"
)
TRACKING_CODE_PROMPT = "🔖 Ingresa el código de seguimiento de tu pedido (ejemplo: 0007-250101-001)"

NEW_ORDER_ABANDON_REASON = "Se inició un pedido nuevo antes de terminar la confirmación"
SUPPLIER_ABANDON_REASON = "Se cambió el proveedor antes de terminar la confirmación"


def welcome_messages(name: str | None = None) -> list[str]:
    greeting = f"Holaa {name}, soy Luixa, tu *Chatbot* para los pedidos" if name else (
        "Holaa, soy Luixa, tu *Chatbot* para los pedidos"
    )
    return [
        greeting,
        "Ingresa tu pedido para que pueda ayudarte a realizarlo\nIngresa la palabra *pedido*",
    ]


def start_conversation(conversation: Conversation) -> list[str]:
    reset_state(conversation)
    conversation.state = states.IDLE
    return welcome_messages()


def _client_not_found(phone: str, retry_hint: str = "") -> str:
    return (
        f"❌ No encontré un cliente registrado con el número {phone}. "
        f"Por favor verifica que el número esté registrado en el sistema.{retry_hint}"
    )


def _supplier_not_found(phone: str, retry_hint: str = "") -> str:
    return (
        f"❌ No encontré un proveedor registrado con el número {phone}. "
        f"Por favor verifica que el número esté registrado en el sistema.{retry_hint}"
    )


def _supplier_catalog(db: Session, supplier_id: int, supplier_name: str, title: str = "CATÁLOGO DE") -> str:
    return format_catalog(supplier_name, list_catalog(db, supplier_id), title=title)


# --- keywords -------------------------------------------------------------


def _on_welcome(db, conversation, data, text):
    conversation.state = states.IDLE
    return welcome_messages()


def _on_new_order(db, conversation, data, text):
    abandon_confirmation(db, data, NEW_ORDER_ABANDON_REASON)
    data.replace_pending_order(None)
    conversation.state = states.AWAITING_CLIENT_PHONE
    return ["📋 Para procesar tu pedido necesito algunos datos primero.", CLIENT_PHONE_PROMPT]


def _on_confirm(db, conversation, data, text):
    result = confirm_order(db, conversation, data)
    if result.ok:
        conversation.state = states.IDLE
    return ["⏳ Confirmando tu pedido...", result.message]


def _on_correct_client(db, conversation, data, text):
    conversation.state = states.CORRECTING_CLIENT
    return [
        "🔄 Vamos a corregir los datos del cliente.",
        "👤 Por favor, ingresa el nuevo número de teléfono del cliente (ejemplo: +52 246 123 4567)",
    ]


def _on_correct_supplier(db, conversation, data, text):
    conversation.state = states.CORRECTING_SUPPLIER
    return [
        "🔄 Vamos a corregir los datos del proveedor.",
        "🏪 Por favor, ingresa el nuevo número del proveedor (ejemplo: +52 246 987 6543)",
    ]


def _on_catalog(db, conversation, data, text):
    if data.supplier_id:
        return [_supplier_catalog(db, data.supplier_id, data.supplier_name or "")]
    conversation.state = states.AWAITING_CATALOG_SUPPLIER
    return ["🏪 ¿De qué proveedor quieres ver el catálogo? Ingresa su número (ejemplo: +52 246 987 6543)"]


def _on_lookup(db, conversation, data, text):
    conversation.state = states.AWAITING_LOOKUP_CODE
    return [TRACKING_CODE_PROMPT]


def _on_status(db, conversation, data, text):
    conversation.state = states.AWAITING_STATUS_CODE
    return [TRACKING_CODE_PROMPT]


def _on_cancel(db, conversation, data, text):
    conversation.state = states.AWAITING_CANCEL_CODE
    return ["🗑️ Ingresa el código de seguimiento del pedido que quieres cancelar."]


def _on_stats(db, conversation, data, text):
    conversation.state = states.AWAITING_STATS_CLIENT
    return ["📊 Ingresa el número de teléfono del cliente (ejemplo: +52 246 123 4567)"]


KEYWORDS: dict[str, Handler] = {
    "hola": _on_welcome,
    "hi": _on_welcome,
    "hello": _on_welcome,
    "pedido": _on_new_order,
    "orden": _on_new_order,
    "comprar": _on_new_order,
    "nuevo pedido": _on_new_order,
    "confirmar": _on_confirm,
    "corregir cliente": _on_correct_client,
    "cambiar cliente": _on_correct_client,
    "corregir proveedor": _on_correct_supplier,
    "cambiar proveedor": _on_correct_supplier,
    "catalogo": _on_catalog,
    "buscar pedido": _on_lookup,
    "consultar estado": _on_status,
    "cancelar pedido": _on_cancel,
    "mis estadisticas": _on_stats,
}


# --- captures -------------------------------------------------------------


def _capture_client_phone(db, conversation, data, text):
    phone = normalize_phone(text)
    client = find_client_by_phone(db, phone)
    if client is None:
        return [_client_not_found(phone)]
    data.set_client(client.id, client.name, client.phone)
    conversation.state = states.AWAITING_SUPPLIER_PHONE
    return [f"✅ Cliente encontrado: {client.name}", SUPPLIER_PHONE_PROMPT]


def _capture_supplier_phone(db, conversation, data, text):
    phone = normalize_phone(text)
    supplier = find_supplier_by_phone(db, phone)
    if supplier is None:
        return [_supplier_not_found(phone)]
    data.set_supplier(supplier.id, supplier.name, supplier.phone)
    conversation.state = states.COLLECTING_ITEMS
    return [
        f"✅ Proveedor encontrado: {supplier.name}",
        _supplier_catalog(db, supplier.id, supplier.name),
        ORDER_PROMPT,
    ]


def _capture_order_text(db, conversation, data, text):
    if not data.has_identities():
        conversation.state = states.AWAITING_CLIENT_PHONE
        return ["❌ Error: faltan datos del cliente o proveedor.", CLIENT_PHONE_PROMPT]

    result = submit_order_text(db, data, text)
    if not result.ok:
        return [
            "\n\n".join(result.errors),
            "✏️ Corrige tu pedido y envíalo completo nuevamente, un producto por línea.",
        ]
    return ["\n\n".join(result.accepted), format_order_summary(data)]


def _capture_corrected_client(db, conversation, data, text):
    phone = normalize_phone(text)
    client = find_client_by_phone(db, phone)
    if client is None:
        return [_client_not_found(phone, '\n\n¿Quieres intentar con otro número? Escribe "corregir cliente" nuevamente.')]

    data.set_client(client.id, client.name, client.phone)
    if data.pending_order is not None:
        data.pending_order.client_id = client.id

    if data.supplier_id:
        conversation.state = states.COLLECTING_ITEMS
        return [
            f"✅ Cliente actualizado: {client.name}\n\n"
            '¿Los datos del proveedor están correctos? Si no, escribe "corregir proveedor". '
            "Si están bien, puedes continuar escribiendo tu pedido."
        ]
    conversation.state = states.AWAITING_SUPPLIER_PHONE
    return [f"✅ Cliente actualizado: {client.name}", SUPPLIER_PHONE_PROMPT]


def _capture_corrected_supplier(db, conversation, data, text):
    phone = normalize_phone(text)
    supplier = find_supplier_by_phone(db, phone)
    if supplier is None:
        return [
            _supplier_not_found(phone, '\n\n¿Quieres intentar con otro número? Escribe "corregir proveedor" nuevamente.')
        ]

    replies = [f"✅ Proveedor actualizado: {supplier.name}"]
    if data.supplier_id != supplier.id:
        abandon_confirmation(db, data, SUPPLIER_ABANDON_REASON)
        if data.pending_order is not None:
            # los productos validados pertenecen al proveedor anterior
            data.replace_pending_order(None)
            replies.append("ℹ️ Tu pedido anterior se descartó porque cambió el proveedor.")
    data.set_supplier(supplier.id, supplier.name, supplier.phone)
    replies.append(_supplier_catalog(db, supplier.id, supplier.name, title="CATÁLOGO ACTUALIZADO DE"))

    if data.client_id:
        conversation.state = states.COLLECTING_ITEMS
        replies.append("🛍️ Ahora puedes escribir tu pedido basándote en el catálogo actualizado.")
    else:
        conversation.state = states.AWAITING_CLIENT_PHONE
        replies.append(CLIENT_PHONE_PROMPT)
    return replies


def _capture_catalog_supplier(db, conversation, data, text):
    phone = normalize_phone(text)
    supplier = find_supplier_by_phone(db, phone)
    if supplier is None:
        return [_supplier_not_found(phone)]
    data.consult_supplier_id = supplier.id
    data.consult_supplier_name = supplier.name
    conversation.state = states.IDLE
    return [_supplier_catalog(db, supplier.id, supplier.name)]


def _capture_lookup_code(db, conversation, data, text):
    lookup = lookup_order(db, text)
    if lookup is None:
        return [not_found_message(text)]
    conversation.state = states.IDLE
    return [format_order_details(lookup)]


def _capture_status_code(db, conversation, data, text):
    order = get_order_by_code(db, text)
    if order is None:
        return [not_found_message(text)]
    conversation.state = states.IDLE
    return [format_order_status(order)]


def _capture_cancel_code(db, conversation, data, text):
    result = cancel_order(db, text)
    if result.status == "not_found":
        return [result.message]
    conversation.state = states.IDLE
    return [result.message]


def _capture_stats_client(db, conversation, data, text):
    phone = normalize_phone(text)
    client = find_client_by_phone(db, phone)
    if client is None:
        return [_client_not_found(phone)]
    data.consult_client_id = client.id
    data.consult_client_name = client.name
    conversation.state = states.IDLE
    return [format_client_statistics(client_statistics(db, client.id))]


CAPTURES: dict[str, Handler] = {
    states.AWAITING_CLIENT_PHONE: _capture_client_phone,
    states.AWAITING_SUPPLIER_PHONE: _capture_supplier_phone,
    states.COLLECTING_ITEMS: _capture_order_text,
    states.CORRECTING_CLIENT: _capture_corrected_client,
    states.CORRECTING_SUPPLIER: _capture_corrected_supplier,
    states.AWAITING_CATALOG_SUPPLIER: _capture_catalog_supplier,
    states.AWAITING_LOOKUP_CODE: _capture_lookup_code,
    states.AWAITING_STATUS_CODE: _capture_status_code,
    states.AWAITING_CANCEL_CODE: _capture_cancel_code,
    states.AWAITING_STATS_CLIENT: _capture_stats_client,
}


def _run_step(db: Session, conversation: Conversation, handler: Handler, text: str) -> list[str]:
    data = load_state(conversation)
    try:
        replies = handler(db, conversation, data, text)
    except Exception:
        db.rollback()
        logger.exception("Conversation step failed state=%s handler=%s", conversation.state, handler.__name__)
        replies = [GENERIC_ERROR]
    store_state(conversation, data)
    db.commit()
    return replies


def handle_message(db: Session, conversation: Conversation, text: str) -> list[str]:
    text = (text or "").strip()
    keyword = normalize(text)

    handler = KEYWORDS.get(keyword)
    if handler is None:
        handler = CAPTURES.get(conversation.state)

    if handler is None:
        if conversation.state in (states.START, None):
            replies = start_conversation(conversation)
            db.commit()
            return replies
        return [HELP_TEXT]

    logger.info("Conversation step state=%s handler=%s", conversation.state, handler.__name__)
    return _run_step(db, conversation, handler, text)


def _register_flow(db, conversation, data, name):
    replies = [f"¡Hola {name}! 👋 Bienvenido a Luixa."] if name else []
    return replies + _on_new_order(db, conversation, data, "")


def _samples_flow(db, conversation, data, name):
    conversation.state = states.IDLE
    return welcome_messages(name)


FLOWS: dict[str, Handler] = {
    REGISTER_FLOW: _register_flow,
    SAMPLES: _samples_flow,
}


def dispatch_flow(db: Session, conversation: Conversation, flow_name: str, name: str | None = None) -> list[str]:
    handler = FLOWS.get(flow_name)
    if handler is None:
        raise ValueError(f"Unknown flow: {flow_name}")
    logger.info("Flow dispatched flow=%s", flow_name)
    return _run_step(db, conversation, handler, (name or "").strip())
