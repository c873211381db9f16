"""FoodSave: surplus-food package reservations with online payment."""

__version__ = "0.3.0"
