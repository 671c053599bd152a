# seed.py
from __future__ import annotations

import logging

from sqlalchemy import func, select

from db import get_session
from models import Category

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [
    {"name": "Plumbing", "description": "Plumbing services and repairs", "icon": "wrench"},
    {"name": "Electrical", "description": "Electrical work and installations", "icon": "zap"},
    {"name": "Carpentry", "description": "Wood work and furniture", "icon": "hammer"},
    {"name": "Painting", "description": "Interior and exterior painting", "icon": "paintbrush"},
    {"name": "Cleaning", "description": "House and office cleaning", "icon": "sparkles"},
    {"name": "Gardening", "description": "Garden maintenance and landscaping", "icon": "flower"},
    {"name": "HVAC", "description": "Heating, ventilation, and air conditioning", "icon": "fan"},
    {"name": "Roofing", "description": "Roof repair and installation", "icon": "home"},
    {"name": "Masonry", "description": "Brick and stone work", "icon": "brick-wall"},
    {"name": "Moving", "description": "Relocation and moving services", "icon": "truck"},
]


def seed_categories() -> int:
    """Insert the default categories if the table is empty. Returns rows added."""
    with get_session() as s:
        existing = s.scalar(select(func.count()).select_from(Category))
        if existing:
            logger.info("categories already exist, skipping seed")
            return 0
        s.add_all([Category(**c) for c in DEFAULT_CATEGORIES])
        s.commit()
    logger.info("seeded %d categories", len(DEFAULT_CATEGORIES))
    return len(DEFAULT_CATEGORIES)
