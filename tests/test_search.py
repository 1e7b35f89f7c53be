from pathlib import Path
import sys

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from ordercursor.core.cursor_walker import CursorWalker
from ordercursor.core.models import Confidence, SearchMethod
from ordercursor.core.search import BinarySearchNavigator, ExhaustiveSweep, WindowedPreciseSearch
from tests.fake_order_api import FakeOrderApi, descending_ids, make_client


def _walker(ids=None):
    api = FakeOrderApi(descending_ids() if ids is None else ids)
    return api, CursorWalker(make_client(api))


@pytest.mark.parametrize("target_id", [5200, 5181, 5180, 5050, 5001, 4951])
def test_binary_search_finds_exact_rank(target_id):
    api, walker = _walker()

    outcome = BinarySearchNavigator(walker).search(0, 249, target_id)

    assert outcome.found
    assert outcome.exact_position == 5200 - target_id
    assert outcome.method == SearchMethod.BINARY
    assert outcome.confidence == Confidence.EXACT
    assert outcome.total_api_calls == api.request_count


def test_binary_search_with_estimate_as_first_probe():
    api, walker = _walker()
    navigator = BinarySearchNavigator(walker)

    outcome = navigator.search(120, 249, 5050, first_probe=131)

    assert outcome.found
    assert outcome.exact_position == 150
    assert outcome.probes == 3
    assert (outcome.page_first_id, outcome.page_last_id) == (5060, 5041)


def test_binary_search_respects_iteration_cap():
    ids = descending_ids(newest=200000, count=2000, step=1)
    api, walker = _walker(ids)

    outcome = BinarySearchNavigator(walker, max_iterations=2).search(0, 1999, 198500)

    assert not outcome.found
    assert outcome.probes == 2
    assert outcome.error is None


def test_absent_target_inside_page_range_reports_insertion_point():
    ids = descending_ids(newest=1000, count=250, step=2)
    api, walker = _walker(ids)
    window = WindowedPreciseSearch(walker, max_calls=10, radius=100)

    outcome = BinarySearchNavigator(walker, window=window).search(0, 249, 901)

    assert not outcome.found
    assert outcome.best_position == 50
    assert outcome.error is None


def test_absent_target_between_adjacent_pages_is_pinned():
    ids = list(range(1000, 980, -1)) + list(range(900, 880, -1))
    api, walker = _walker(ids)

    outcome = BinarySearchNavigator(walker).search(0, 39, 950)

    assert not outcome.found
    assert outcome.best_position == 20


def test_bounds_pinned_by_sampled_pages_keep_the_insertion_point():
    api, walker = _walker()
    navigator = BinarySearchNavigator(walker)

    pinned = navigator.search(120, 119, 5080, lower_pinned=True, upper_pinned=True)
    unpinned = navigator.search(120, 119, 5080)

    assert pinned.best_position == 120
    assert pinned.probes == 0
    assert unpinned.best_position is None
    assert api.request_count == 0


def test_running_off_the_end_shrinks_upper_bound():
    api, walker = _walker()

    outcome = BinarySearchNavigator(walker).search(0, 2000, 4960)

    assert outcome.found
    assert outcome.exact_position == 240
    assert walker.sequence_length == 250


def test_windowed_search_finds_target_near_center():
    api, walker = _walker()

    outcome = WindowedPreciseSearch(walker, max_calls=10, radius=40).search_around(100, 5130)

    assert outcome.found
    assert outcome.exact_position == 70
    assert api.request_count <= 10


def test_windowed_search_never_exceeds_budget():
    ids = descending_ids(newest=100000, count=5000, step=1)
    api, walker = _walker(ids)

    outcome = WindowedPreciseSearch(walker, max_calls=4, radius=100).search_around(2000, 1)

    assert not outcome.found
    assert outcome.total_api_calls <= 4
    assert api.request_count <= 4


def test_window_stops_after_passing_radius():
    api, walker = _walker()

    outcome = WindowedPreciseSearch(walker, max_calls=10, radius=10).search_around(30, 1)

    assert not outcome.found
    assert api.request_count == 3, "pages 0, 20 and the one holding position 40 only"


def test_exhaustive_sweep_proves_absence():
    api, walker = _walker()

    outcome = ExhaustiveSweep(walker).sweep(9999)

    assert not outcome.found
    assert outcome.proven_absent
    assert outcome.method == SearchMethod.NOT_FOUND
    assert outcome.total_api_calls == 13
    assert outcome.best_position == 0


def test_exhaustive_sweep_insertion_point_for_old_target():
    api, walker = _walker()

    outcome = ExhaustiveSweep(walker).sweep(10)

    assert outcome.proven_absent
    assert outcome.best_position == 250


def test_sweep_out_of_budget_proves_nothing():
    api, walker = _walker()

    outcome = ExhaustiveSweep(walker, max_calls=5).sweep(4951)

    assert not outcome.found
    assert not outcome.proven_absent
    assert outcome.total_api_calls == 5


def test_sweep_reports_its_method():
    api, walker = _walker()

    outcome = ExhaustiveSweep(walker, max_calls=100, method=SearchMethod.SWEEP).sweep(5050)

    assert outcome.found
    assert outcome.exact_position == 150
    assert outcome.method == SearchMethod.SWEEP
    assert outcome.total_api_calls == 8
