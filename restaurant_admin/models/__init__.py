from restaurant_admin.models.product import Category, Product
from restaurant_admin.models.inventory import InventoryItem, StockMovement
from restaurant_admin.models.order import Order, OrderItem, OrderStatusEvent
