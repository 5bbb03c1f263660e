"""Builders for cart lines and checkout forms shared by the tests."""
from models.product import Product
from schemas.order import OrderCreate


def cart_line(product: Product, quantity: int, **overrides) -> dict:
    line = {
        "id": product.id,
        "name": product.name,
        "price": float(product.price),
        "image": product.image,
        "quantity": quantity,
    }
    line.update(overrides)
    return line


def checkout_form(items, **overrides) -> dict:
    form = {
        "name": "Ayesha Khan",
        "email": "ayesha@example.com",
        "phone": "+92 300 1234567",
        "address": "12 Hussainabad Road",
        "city": "Skardu",
        "payment_method": "cod",
        "items": items,
    }
    form.update(overrides)
    return form


def order_create(items, **overrides) -> OrderCreate:
    return OrderCreate.model_validate(checkout_form(items, **overrides))
