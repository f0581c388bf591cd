from pathlab.database import SessionLocal
from pathlab.models.catalog import TestCategory


# Canonical names the keyword rules map into; they must exist for those rules to hit.
CATEGORIES = [
    {"name": "HAEMATOLOGY", "category_code": "CAT001"},
    {"name": "BIOCHEMISTRY", "category_code": "CAT002"},
    {"name": "MICROBIOLOGY", "category_code": "CAT003"},
    {"name": "SEROLOGY", "category_code": "CAT004"},
    {"name": "CLINICAL PATHOLOGY", "category_code": "CAT005"},
    {"name": "IMMUNOLOGY", "category_code": "CAT006"},
    {"name": "HORMONES", "category_code": "CAT007"},
]


def seed_categories(db=None):
    session = db or SessionLocal()
    try:
        existing = {row.name.upper(): row for row in session.query(TestCategory).all()}
        for item in CATEGORIES:
            match = existing.get(item["name"])
            if match:
                if not match.category_code:
                    match.category_code = item["category_code"]
                    session.add(match)
                continue
            session.add(TestCategory(name=item["name"], category_code=item["category_code"]))
        session.commit()
    finally:
        if db is None:
            session.close()
