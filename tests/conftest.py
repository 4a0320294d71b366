"""Shared fixtures: a small in-memory catalog and recommendation store."""

import pytest

from models import CatalogProduct, SessionStatus
from product_mapper import MappingConfig, ProductMapper
from repository import InMemoryCatalogRepository, InMemoryRecommendationStore

SMARTPHONES = "smartphones"
TABLETS = "tablets"


@pytest.fixture
def catalog() -> InMemoryCatalogRepository:
    repo = InMemoryCatalogRepository()
    repo.add_product(CatalogProduct(
        id="p-iphone15",
        name="iPhone 15 Pro 128GB",
        description="Apple iPhone 15 Pro smartphone",
        features_text="防水, 5G, カメラ",
        price=150000,
        rating=4.6,
        review_count=320,
    ), [SMARTPHONES])
    repo.add_product(CatalogProduct(
        id="p-galaxy",
        name="Galaxy S24",
        description="Samsung Android smartphone",
        features_text="防水, 5G",
        price=120000,
        rating=4.3,
        review_count=80,
    ), [SMARTPHONES])
    repo.add_product(CatalogProduct(
        id="p-pixel",
        name="Pixel 8",
        description="Google smartphone",
        features_text="AI camera",
        price=90000,
        rating=3.9,
        review_count=40,
    ), [SMARTPHONES])
    repo.add_product(CatalogProduct(
        id="p-iphone14",
        name="iPhone 14",
        description="Apple smartphone",
        features_text="5G",
        price=100000,
        rating=4.9,
        review_count=900,
    ), [SMARTPHONES], in_stock=False)
    repo.add_product(CatalogProduct(
        id="p-fire",
        name="Fire HD 10",
        description="Amazon tablet",
        features_text="Alexa",
        price=20000,
        rating=3.8,
        review_count=30,
    ), [TABLETS])
    return repo


@pytest.fixture
def mapping_config() -> MappingConfig:
    return MappingConfig()


@pytest.fixture
def mapper(catalog, mapping_config) -> ProductMapper:
    return ProductMapper(catalog, mapping_config)


@pytest.fixture
def store() -> InMemoryRecommendationStore:
    s = InMemoryRecommendationStore()
    s.sessions["session-1"] = SessionStatus.COMPLETED
    s.sessions["session-open"] = SessionStatus.IN_PROGRESS
    s.product_ids.update({"p-iphone15", "p-galaxy", "p-pixel", "p-fire"})
    return s
