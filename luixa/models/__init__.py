from luixa.models.client import Client
from luixa.models.supplier import Supplier
from luixa.models.product import Product
from luixa.models.order import Order
from luixa.models.order_item import OrderItem
from luixa.models.stock_movement import StockMovement
from luixa.models.conversation import Conversation
from luixa.models.processed_message import ProcessedMessage
from luixa.models.blacklisted_number import BlacklistedNumber
from luixa.models.whatsapp_message_log import WhatsAppMessageLog
