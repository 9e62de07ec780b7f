"""Category set every new account starts with."""
from typing import List

from budgetapp.models.finance import Category, CategoryType

DEFAULT_CATEGORIES = [
    # Income
    ("Salary", CategoryType.INCOME, "#22c55e", "💰"),
    ("Freelance", CategoryType.INCOME, "#3b82f6", "💼"),
    ("Investment", CategoryType.INCOME, "#8b5cf6", "📈"),
    ("Other Income", CategoryType.INCOME, "#06b6d4", "💵"),
    # Expense
    ("Food & Dining", CategoryType.EXPENSE, "#ef4444", "🍽️"),
    ("Transportation", CategoryType.EXPENSE, "#f97316", "🚗"),
    ("Shopping", CategoryType.EXPENSE, "#ec4899", "🛍️"),
    ("Entertainment", CategoryType.EXPENSE, "#8b5cf6", "🎬"),
    ("Bills & Utilities", CategoryType.EXPENSE, "#6b7280", "⚡"),
    ("Healthcare", CategoryType.EXPENSE, "#dc2626", "🏥"),
    ("Education", CategoryType.EXPENSE, "#2563eb", "📚"),
    ("Other Expenses", CategoryType.EXPENSE, "#64748b", "💸"),
]


def build_default_categories(user_id: int) -> List[Category]:
    return [
        Category(user_id=user_id, name=name, type=category_type, color=color, icon=icon)
        for name, category_type, color, icon in DEFAULT_CATEGORIES
    ]
