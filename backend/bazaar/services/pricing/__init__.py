from bazaar.services.pricing.calculator import CartSummary, LinePrice, compute_line, summarize_cart

__all__ = ["CartSummary", "LinePrice", "compute_line", "summarize_cart"]
