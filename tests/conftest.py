"""
Pytest configuration and fixtures for ldt-pipeline tests

This module provides shared fixtures for unit, integration, and E2E tests.
"""
import os
import shutil
from typing import Generator

import pytest

from ldt_pipeline.config.settings import PipelineSettings
from ldt_pipeline.core.models import Owner
from ldt_pipeline.ingest.factory import PipelineComponents, build_components
from ldt_pipeline.owners.directory import InMemoryOwnerDirectory
from ldt_pipeline.warehouse.memory_store import InMemoryStore

# Example message: header, BSNR record, LANR record
EXAMPLE_MESSAGE = b"01380008230\n0180201793860200\n0180212772720053"
EXAMPLE_BSNR = "93860200"
EXAMPLE_LANR = "72720053"


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that require Docker containers"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests that test the full pipeline"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds to run"
    )


def _docker_available() -> bool:
    try:
        import docker

        docker.from_env().ping()
        return True
    except Exception:
        return False


def _java_available() -> bool:
    return bool(os.getenv("JAVA_HOME")) or shutil.which("java") is not None


# =======================
# PIPELINE FIXTURES (in-memory)
# =======================

@pytest.fixture
def example_message() -> bytes:
    return EXAMPLE_MESSAGE


@pytest.fixture
def example_owner() -> Owner:
    return Owner(user_id="dr-mueller", tenant_id="praxis-nord", bsnr=EXAMPLE_BSNR, lanr=EXAMPLE_LANR)


@pytest.fixture
def owner_directory(example_owner) -> InMemoryOwnerDirectory:
    return InMemoryOwnerDirectory([example_owner])


@pytest.fixture
def settings() -> PipelineSettings:
    """Settings with short retry delays so tests can move the clock explicitly"""
    return PipelineSettings(
        max_retries=2,
        retry_base_delay_seconds=10,
        retry_max_delay_seconds=60,
        retry_poll_interval_seconds=0.1,
    )


@pytest.fixture
def memory_store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def components(settings, memory_store, owner_directory) -> Generator[PipelineComponents, None, None]:
    """
    Fully wired pipeline over the in-memory store

    Yields:
        PipelineComponents
    """
    components = build_components(settings, store=memory_store, directory=owner_directory)
    yield components
    components.close()


# =======================
# SPARK FIXTURES
# =======================

@pytest.fixture(scope="session")
def spark_session():
    """
    Create a Spark session for testing with local mode

    Yields:
        SparkSession configured for local testing
    """
    if not _java_available():
        pytest.skip("Java runtime not available for Spark")

    from pyspark.sql import SparkSession

    spark = (
        SparkSession.builder
        .appName("ldt-pipeline-test")
        .master("local[2]")
        .config("spark.sql.shuffle.partitions", "2")
        .config("spark.driver.memory", "1g")
        .config("spark.ui.enabled", "false")  # Disable UI for tests
        .getOrCreate()
    )

    # Set log level to WARN to reduce test output noise
    spark.sparkContext.setLogLevel("WARN")

    yield spark

    spark.stop()


# =======================
# DATABASE FIXTURES (Testcontainers)
# =======================

@pytest.fixture(scope="session")
def postgres_container():
    """
    Start PostgreSQL container for integration tests

    Yields:
        PostgresContainer instance
    """
    if not _docker_available():
        pytest.skip("Docker not available for testcontainers")

    from testcontainers.postgres import PostgresContainer

    with PostgresContainer(
        image="postgres:16.2-alpine",
        username="test_pipeline",
        password="test_password",
        dbname="test_ldt_pipeline"
    ) as postgres:
        yield postgres


@pytest.fixture(scope="session")
def db_pool(postgres_container):
    """
    Connection pool against the test container with the schema created

    Yields:
        Open DatabaseConnectionPool
    """
    from ldt_pipeline.warehouse.connection import DatabaseConnectionPool
    from ldt_pipeline.warehouse.schema_mgmt import SchemaManager

    pool = DatabaseConnectionPool(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database="test_ldt_pipeline",
        user="test_pipeline",
        password="test_password",
        min_size=1,
        max_size=8,
    )
    pool.open()
    SchemaManager(pool).create_tables()

    yield pool

    pool.close()


@pytest.fixture
def clean_db(db_pool):
    """
    Provide a clean database by truncating all tables before each test

    Yields:
        DatabaseConnectionPool over empty tables
    """
    from ldt_pipeline.warehouse.schema_mgmt import SchemaManager

    SchemaManager(db_pool).truncate_all()
    yield db_pool


# =======================
# FILE FIXTURES
# =======================

@pytest.fixture(scope="session")
def test_data_dir() -> str:
    """
    Get path to test data fixtures directory

    Returns:
        Path to tests/fixtures directory
    """
    return os.path.join(os.path.dirname(__file__), "fixtures")


@pytest.fixture
def sample_message(test_data_dir) -> bytes:
    """Full lab report fixture (CR/LF terminated)"""
    with open(os.path.join(test_data_dir, "sample_message.ldt"), "rb") as f:
        return f.read()
