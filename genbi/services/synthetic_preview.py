"""
Synthetic preview rows.

Used only when no real rows can be produced for a dataset. Rows are shaped
after the inferred schema, or with no schema after a guess from the file
name. Callers must flag the resulting sample as synthetic.
"""

import random
from datetime import date, timedelta
from typing import List, Optional

from genbi.models.dataset import ColumnSchema, ColumnType
from genbi.models.upload import Row

DEFAULT_ROWS = 50

_MAKES = ["Toyota", "Honda", "Ford", "Tesla", "BMW", "Mercedes", "Audi"]
_MODELS = ["Model 3", "Corolla", "F-150", "Civic", "X5", "E-Class"]
_COLORS = ["Black", "White", "Red", "Blue", "Silver", "Gray"]
_CATEGORIES = ["Electronics", "Clothing", "Food", "Books", "Home"]
_REGIONS = ["North", "South", "East", "West", "Central"]
_RESPONSES = ["Strongly Agree", "Agree", "Neutral", "Disagree", "Strongly Disagree"]
_AGE_GROUPS = ["18-24", "25-34", "35-44", "45-54", "55+"]
_GENDERS = ["Male", "Female", "Non-binary", "Prefer not to say"]


def rows_from_schema(
    schema: ColumnSchema,
    count: int = DEFAULT_ROWS,
    rng: Optional[random.Random] = None,
    today: Optional[date] = None,
) -> List[Row]:
    rng = rng or random.Random()
    today = today or date.today()
    rows = []
    for i in range(count):
        row: Row = {}
        for column, column_type in schema.items():
            if column_type == ColumnType.NUMBER:
                row[column] = rng.randrange(1000)
            elif column_type == ColumnType.BOOLEAN:
                row[column] = rng.random() > 0.5
            elif column_type == ColumnType.DATE:
                row[column] = (today - timedelta(days=rng.randrange(365))).isoformat()
            else:
                row[column] = f"Sample {column} {i + 1}"
        rows.append(row)
    return rows


def _cycle_date(year: int, i: int) -> str:
    return date(year, i % 12 + 1, i % 28 + 1).isoformat()


def rows_from_filename(
    file_name: str,
    count: int = DEFAULT_ROWS,
    rng: Optional[random.Random] = None,
    year: Optional[int] = None,
) -> List[Row]:
    """Plausible rows for a dataset whose content could not be read."""
    rng = rng or random.Random()
    year = year or date.today().year
    lowered = (file_name or "").lower()

    if any(word in lowered for word in ("vehicle", "car", "auto")):
        return [
            {
                "id": i + 1,
                "make": _MAKES[i % len(_MAKES)],
                "model": _MODELS[i % len(_MODELS)],
                "year": 2015 + i % 8,
                "price": rng.randrange(20000, 70000),
                "color": _COLORS[i % len(_COLORS)],
                "electric": i % 5 in (0, 4),
                "mileage": rng.randrange(100000),
            }
            for i in range(count)
        ]

    if "sales" in lowered or "revenue" in lowered:
        return [
            {
                "id": i + 1,
                "product": f"Product {i % 10 + 1}",
                "category": _CATEGORIES[i % len(_CATEGORIES)],
                "date": _cycle_date(year, i),
                "quantity": rng.randrange(1, 51),
                "price": rng.randrange(10, 1000),
                "revenue": rng.randrange(100, 10000),
                "region": _REGIONS[i % len(_REGIONS)],
            }
            for i in range(count)
        ]

    if "survey" in lowered or "feedback" in lowered:
        return [
            {
                "id": i + 1,
                "question": f"Survey Question {i % 5 + 1}",
                "response": _RESPONSES[i % len(_RESPONSES)],
                "age_group": _AGE_GROUPS[i % len(_AGE_GROUPS)],
                "gender": _GENDERS[i % len(_GENDERS)],
                "date_submitted": _cycle_date(year, i),
            }
            for i in range(count)
        ]

    return [
        {
            "id": i + 1,
            "name": f"Item {i + 1}",
            "value": rng.randrange(1000),
            "category": "ABCDE"[i % 5],
            "date": _cycle_date(year, i),
            "active": i % 3 == 0,
        }
        for i in range(count)
    ]
