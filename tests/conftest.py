from datetime import datetime

import pytest

from gtm_ssg_prep import GTMServerSidePrep
from gtm_builders import ga4_scenario_container, multi_vendor_container


@pytest.fixture
def fixed_now():
    return datetime(2024, 1, 15, 12, 30, 45)


@pytest.fixture
def ga4_container():
    return ga4_scenario_container()


@pytest.fixture
def vendor_container():
    return multi_vendor_container()


@pytest.fixture
def ga4_analysis(ga4_container):
    return GTMServerSidePrep(ga4_container).analyze_container_for_ssg()


@pytest.fixture
def vendor_analysis(vendor_container):
    return GTMServerSidePrep(vendor_container).analyze_container_for_ssg()
