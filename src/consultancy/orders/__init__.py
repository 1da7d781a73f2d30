"""Checkout orders -- placement, CRM fulfillment classification, confirmation."""
