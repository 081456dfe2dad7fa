"""Tests for the spiderfier engine, driven through the in-memory map surface."""

import math
import asyncio
import pytest
from pyoms import (
    AsyncioScheduler, EngineState, LegColors, ManualScheduler, MarkerStatus, Outcome,
    OverlappingMarkerSpiderfier, ProjectionNotReadyError
)
from pyoms.geom import pt_distance_sq
from pyoms.spiderfier import HIGHLIGHTED_LEG_Z_INDEX, MAX_Z_INDEX, USUAL_LEG_Z_INDEX
from pyoms.surface import LatLng, SimpleMap, SimpleMarker

# At zoom 10, 0.001 degrees of longitude is under a pixel and 0.1 degrees is about 73 pixels
HOME = LatLng(51.5, -0.1)
FAR = LatLng(51.5, 0.0)


@pytest.fixture
def gmap():
    m = SimpleMap(zoom=10)
    m.idle()
    return m


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def oms(gmap, scheduler):
    return OverlappingMarkerSpiderfier(gmap, scheduler=scheduler)


def project(gmap, position):
    return gmap.get_projection().from_lat_lng_to_div_pixel(position)


def place(oms, gmap, count, position=HOME, z_index=None):
    markers = [SimpleMarker(position, gmap, z_index=z_index, title=f"m{i}") for i in range(count)]
    for marker in markers:
        oms.track(marker)
    return markers


class StatusLog:
    """Latest format status per marker."""

    def __init__(self, oms):
        self.latest = {}
        self.events = []
        oms.subscribe('format', self)

    def __call__(self, marker, status):
        self.latest[id(marker)] = status
        self.events.append((marker, status))

    def __getitem__(self, marker):
        return self.latest.get(id(marker))


class TestSpiderfy:
    """Test fanning out a cluster."""

    def test_lone_marker_click(self, gmap, oms):
        """A marker without neighbours reports a plain click."""
        marker = place(oms, gmap, 1)[0]
        clicks = []
        oms.subscribe('click', lambda m, e: clicks.append((m, e)))

        assert oms.handle_marker_click(marker, 'evt') == Outcome.click
        assert clicks == [(marker, 'evt')]
        assert oms.state == EngineState.normal

    def test_host_click_reaches_engine(self, gmap, oms):
        """Clicking the marker on the map goes through the engine."""
        markers = place(oms, gmap, 2)
        spiderfies = []
        oms.subscribe('spiderfy', lambda s, n: spiderfies.append(s))
        markers[0].click('evt')
        assert len(spiderfies) == 1
        assert oms.state == EngineState.spiderfied

    def test_circle(self, gmap, oms):
        """Three coincident markers go on a circle around their shared point."""
        markers = place(oms, gmap, 3)
        body = project(gmap, HOME)

        assert oms.handle_marker_click(markers[0]) == Outcome.spiderfied
        assert oms.state == EngineState.spiderfied

        radius = 23.0 * 5 / (2 * math.pi)
        pts = [project(gmap, m.get_position()) for m in markers]
        for pt in pts:
            assert math.sqrt(pt_distance_sq(pt, body)) == pytest.approx(radius, abs=1e-6)

        side = radius * math.sqrt(3)
        for i in range(3):
            for j in range(i + 1, 3):
                assert math.sqrt(pt_distance_sq(pts[i], pts[j])) == pytest.approx(side, abs=1e-6)

    def test_circle_first_foot_angle(self, gmap, oms):
        """Coincident markers take the feet in tracking order, from the start angle on."""
        markers = place(oms, gmap, 3)
        body = project(gmap, HOME)
        oms.handle_marker_click(markers[2])

        radius = 23.0 * 5 / (2 * math.pi)
        pt = project(gmap, markers[0].get_position())
        assert pt.x == pytest.approx(body.x + radius * math.cos(math.pi / 6), abs=1e-6)
        assert pt.y == pytest.approx(body.y + radius * math.sin(math.pi / 6), abs=1e-6)

    def test_spiral(self, gmap, oms):
        """Ten coincident markers go on a spiral with distinct leg lengths."""
        markers = place(oms, gmap, 10)
        body = project(gmap, HOME)
        oms.handle_marker_click(markers[0])

        lengths = sorted(
            math.sqrt(pt_distance_sq(project(gmap, m.get_position()), body)) for m in markers
        )
        assert lengths[0] == pytest.approx(11.0, abs=1e-6)
        assert all(a < b for a, b in zip(lengths, lengths[1:]))

    def test_spiderfy_event(self, gmap, oms):
        """The spiderfy channel gets the cluster and the rest."""
        cluster = place(oms, gmap, 3)
        far = place(oms, gmap, 1, FAR)[0]
        received = []
        oms.subscribe('spiderfy', lambda s, n: received.append((s, n)))

        oms.handle_marker_click(cluster[1])
        assert len(received) == 1
        spiderfied, non_nearby = received[0]
        assert sorted(spiderfied, key=id) == sorted(cluster, key=id)
        assert non_nearby == [far]

    def test_legs(self, gmap, oms):
        """Each spiderfied marker gets a leg from its usual position to its foot."""
        markers = place(oms, gmap, 3)
        oms.handle_marker_click(markers[0])

        assert len(gmap.legs) == 3
        for marker in markers:
            leg = oms.registry.datum(marker).leg
            assert leg in gmap.legs
            assert leg.path == [HOME, marker.get_position()]
            assert leg.options == {
                'stroke_color': '#444',
                'stroke_weight': 1.5,
                'z_index': USUAL_LEG_Z_INDEX,
            }

    def test_satellite_leg_colour(self, gmap, oms):
        """Leg colour follows the map type."""
        markers = place(oms, gmap, 2)
        gmap.map_type_id = 'satellite'
        oms.handle_marker_click(markers[0])
        assert all(leg.options['stroke_color'] == '#fff' for leg in gmap.legs)

    def test_z_index_raised(self, gmap, oms):
        """Spiderfied markers are raised above everything else."""
        markers = place(oms, gmap, 3, z_index=7)
        oms.handle_marker_click(markers[0])
        assert all(m.get_z_index() > MAX_Z_INDEX for m in markers)

    def test_hidden_markers_left_out(self, gmap, oms):
        """Hidden markers are neither fanned out nor counted as the rest."""
        markers = place(oms, gmap, 2)
        hidden = SimpleMarker(HOME, gmap, visible=False)
        oms.track(hidden)
        received = []
        oms.subscribe('spiderfy', lambda s, n: received.append((s, n)))

        oms.handle_marker_click(markers[0])
        spiderfied, non_nearby = received[0]
        assert hidden not in spiderfied
        assert non_nearby == []
        assert hidden.get_position() == HOME

    def test_street_view_blocks(self, gmap, oms):
        """In street view a click is only a click."""
        markers = place(oms, gmap, 3)
        clicks = []
        oms.subscribe('click', lambda m, e: clicks.append(m))
        gmap.street_view_visible = True

        assert oms.handle_marker_click(markers[0]) == Outcome.click
        assert clicks == [markers[0]]
        assert oms.state == EngineState.normal

    def test_untracked_marker_click(self, gmap, oms):
        """Clicks on markers the engine does not know are ignored."""
        place(oms, gmap, 2)
        stranger = SimpleMarker(HOME, gmap)
        assert oms.handle_marker_click(stranger) == Outcome.noop

    def test_click_during_transition(self, gmap, oms):
        """Clicks arriving mid-transition do nothing."""
        markers = place(oms, gmap, 3)
        outcomes = []

        def reenter(marker, status):
            if status == MarkerStatus.SPIDERFIED:
                outcomes.append((oms.state, oms.handle_marker_click(markers[1])))

        oms.subscribe('format', reenter)
        oms.handle_marker_click(markers[0])
        assert outcomes
        assert all(state == EngineState.spiderfying for state, _ in outcomes)
        assert all(outcome == Outcome.noop for _, outcome in outcomes)
        assert oms.state == EngineState.spiderfied


class TestUnspiderfy:
    """Test collapsing a cluster."""

    def test_nothing_to_unspiderfy(self, oms):
        """Unspiderfying in the normal state is a no-op."""
        assert oms.unspiderfy() == Outcome.noop

    def test_background_click(self, gmap, oms):
        """A map click puts every marker back."""
        markers = place(oms, gmap, 3, z_index=7)
        oms.handle_marker_click(markers[0])
        gmap.click()

        assert oms.state == EngineState.normal
        assert all(m.get_position() == HOME for m in markers)
        assert all(m.get_z_index() == 7 for m in markers)
        assert gmap.legs == []

    def test_unset_z_index_restored(self, gmap, oms):
        """Markers that had no z-index get none back."""
        markers = place(oms, gmap, 2)
        oms.handle_marker_click(markers[0])
        oms.unspiderfy()
        assert all(m.get_z_index() is None for m in markers)

    def test_unspiderfy_event(self, gmap, oms):
        """The unspiderfy channel gets the cluster and the rest."""
        cluster = place(oms, gmap, 2)
        far = place(oms, gmap, 1, FAR)[0]
        received = []
        oms.subscribe('unspiderfy', lambda u, n: received.append((u, n)))

        oms.handle_marker_click(cluster[0])
        assert oms.unspiderfy() == Outcome.unspiderfied
        assert received == [(cluster, [far])]

    def test_ignore_map_click(self, gmap, scheduler):
        """ignore_map_click leaves the cluster open on background clicks."""
        oms = OverlappingMarkerSpiderfier(gmap, {'ignoreMapClick': True}, scheduler=scheduler)
        markers = place(oms, gmap, 3)
        oms.handle_marker_click(markers[0])
        gmap.click()
        assert oms.state == EngineState.spiderfied

    def test_click_spiderfied_marker(self, gmap, oms):
        """Clicking a spiderfied marker collapses the cluster and reports the click."""
        markers = place(oms, gmap, 3)
        clicks = []
        oms.subscribe('click', lambda m, e: clicks.append(m))
        oms.handle_marker_click(markers[0])

        assert oms.handle_marker_click(markers[1]) == Outcome.click
        assert clicks == [markers[1]]
        assert oms.state == EngineState.normal
        assert markers[1].get_position() == HOME

    def test_keep_spiderfied(self, gmap, scheduler):
        """With keep_spiderfied a click on a spiderfied marker leaves it open."""
        oms = OverlappingMarkerSpiderfier(gmap, scheduler=scheduler, keep_spiderfied=True)
        markers = place(oms, gmap, 3)
        clicks = []
        oms.subscribe('click', lambda m, e: clicks.append(m))
        oms.handle_marker_click(markers[0])

        assert oms.handle_marker_click(markers[1]) == Outcome.click
        assert clicks == [markers[1]]
        assert oms.state == EngineState.spiderfied

    def test_switch_cluster(self, gmap, oms):
        """Clicking another cluster collapses the open one first."""
        first = place(oms, gmap, 3)
        second = place(oms, gmap, 2, FAR)
        log = []
        oms.subscribe('spiderfy', lambda s, n: log.append(('spiderfy', len(s))))
        oms.subscribe('unspiderfy', lambda u, n: log.append(('unspiderfy', len(u))))

        oms.handle_marker_click(first[0])
        oms.handle_marker_click(second[0])

        assert log == [('spiderfy', 3), ('unspiderfy', 3), ('spiderfy', 2)]
        assert all(m.get_position() == HOME for m in first)
        assert all(oms.is_spiderfied(m) for m in second)

    def test_zoom_change(self, gmap, oms, scheduler):
        """Zooming collapses the cluster and schedules a recomputation."""
        markers = place(oms, gmap, 3)
        scheduler.run_all()
        oms.handle_marker_click(markers[0])

        gmap.set_zoom(12)
        assert oms.state == EngineState.normal
        assert all(m.get_position() == HOME for m in markers)
        assert scheduler.pending() == 1

    def test_map_type_change(self, gmap, oms):
        """Changing the map type collapses the cluster."""
        markers = place(oms, gmap, 3)
        oms.handle_marker_click(markers[0])
        gmap.set_map_type_id('hybrid')
        assert oms.state == EngineState.normal
        assert gmap.legs == []

    def test_marker_moved_externally(self, gmap, oms):
        """A spiderfied marker moved by someone else stays where it was put."""
        markers = place(oms, gmap, 3)
        statuses = StatusLog(oms)
        oms.handle_marker_click(markers[0])
        statuses.events.clear()

        markers[0].set_position(FAR)

        assert oms.state == EngineState.normal
        assert markers[0].get_position() == FAR
        assert markers[1].get_position() == HOME
        assert markers[2].get_position() == HOME
        assert [m for m, _ in statuses.events] == markers[1:]

    def test_marker_hidden(self, gmap, oms):
        """Hiding a spiderfied marker collapses the cluster."""
        markers = place(oms, gmap, 3)
        oms.handle_marker_click(markers[0])
        markers[1].set_visible(False)
        assert oms.state == EngineState.normal
        assert all(m.get_position() == HOME for m in markers)

    def test_spider_data_follow_state(self, gmap, oms):
        """Spider data exist exactly while a cluster is open."""
        markers = place(oms, gmap, 4)
        assert oms.registry.spiderfied_count() == 0
        oms.handle_marker_click(markers[0])
        assert oms.registry.spiderfied_count() == 4
        oms.unspiderfy()
        assert oms.registry.spiderfied_count() == 0
        assert not any(oms.is_spiderfied(m) for m in markers)


class TestHighlight:
    """Test leg highlighting."""

    def test_mouseover(self, gmap, oms):
        """Hovering a spiderfied marker highlights its leg."""
        markers = place(oms, gmap, 2)
        oms.handle_marker_click(markers[0])
        leg = oms.registry.datum(markers[0]).leg

        markers[0].trigger('mouseover')
        assert leg.options['stroke_color'] == '#f00'
        assert leg.options['z_index'] == HIGHLIGHTED_LEG_Z_INDEX

        markers[0].trigger('mouseout')
        assert leg.options['stroke_color'] == '#444'
        assert leg.options['z_index'] == USUAL_LEG_Z_INDEX

    def test_listeners_removed(self, gmap, oms):
        """Highlight listeners go away with the cluster."""
        markers = place(oms, gmap, 2)
        oms.handle_marker_click(markers[0])
        assert markers[0].listener_count('mouseover') == 1
        oms.unspiderfy()
        assert markers[0].listener_count('mouseover') == 0
        assert markers[0].listener_count('mouseout') == 0

    def test_same_colours(self, gmap, scheduler):
        """No highlighting when both colours are the same."""
        colors = LegColors(usual={'roadmap': '#000'}, highlighted={'roadmap': '#000'})
        oms = OverlappingMarkerSpiderfier(gmap, scheduler=scheduler, leg_colors=colors)
        markers = place(oms, gmap, 2)
        oms.handle_marker_click(markers[0])
        assert markers[0].listener_count('mouseover') == 0


class TestFormat:
    """Test status recomputation."""

    def test_provisional_status(self, gmap, oms):
        """Tracking reports UNSPIDERFIABLE straight away."""
        statuses = StatusLog(oms)
        markers = place(oms, gmap, 2)
        assert all(statuses[m] == MarkerStatus.UNSPIDERFIABLE for m in markers)

    def test_recompute(self, gmap, oms, scheduler):
        """The deferred recomputation sorts markers by proximity."""
        statuses = StatusLog(oms)
        near = place(oms, gmap, 2)
        far = place(oms, gmap, 1, FAR)[0]
        scheduler.run_all()
        assert statuses[near[0]] == MarkerStatus.SPIDERFIABLE
        assert statuses[near[1]] == MarkerStatus.SPIDERFIABLE
        assert statuses[far] == MarkerStatus.UNSPIDERFIABLE

    def test_debounce(self, gmap, oms, scheduler):
        """A burst of changes schedules one recomputation."""
        statuses = StatusLog(oms)
        place(oms, gmap, 3)
        assert scheduler.pending() == 1

        statuses.events.clear()
        scheduler.run_all()
        assert len(statuses.events) == 3

    def test_spiderfy_statuses(self, gmap, oms, scheduler):
        """Spiderfied markers report SPIDERFIED, and SPIDERFIABLE once collapsed."""
        statuses = StatusLog(oms)
        markers = place(oms, gmap, 2)
        scheduler.run_all()

        oms.handle_marker_click(markers[0])
        assert all(statuses[m] == MarkerStatus.SPIDERFIED for m in markers)
        assert scheduler.pending() == 0

        oms.unspiderfy()
        assert all(statuses[m] == MarkerStatus.SPIDERFIABLE for m in markers)

    def test_recompute_while_spiderfied(self, gmap, oms, scheduler):
        """Open cluster members stay SPIDERFIED in a recomputation."""
        statuses = StatusLog(oms)
        markers = place(oms, gmap, 2)
        oms.handle_marker_click(markers[0])
        other = place(oms, gmap, 1, FAR)[0]
        scheduler.run_all()
        assert all(statuses[m] == MarkerStatus.SPIDERFIED for m in markers)
        assert statuses[other] == MarkerStatus.UNSPIDERFIABLE

    def test_waits_for_idle(self, scheduler):
        """Before the map is ready the recomputation waits for idle."""
        gmap = SimpleMap(zoom=10)
        oms = OverlappingMarkerSpiderfier(gmap, scheduler=scheduler)
        statuses = StatusLog(oms)
        markers = place(oms, gmap, 2)

        scheduler.run_all()
        assert all(statuses[m] == MarkerStatus.UNSPIDERFIABLE for m in markers)
        assert gmap.listener_count('idle') == 1

        markers[0].set_visible(True)
        scheduler.run_all()
        assert gmap.listener_count('idle') == 1

        gmap.idle()
        assert all(statuses[m] == MarkerStatus.SPIDERFIABLE for m in markers)
        assert gmap.listener_count('idle') == 0

    def test_basic_format_events(self, gmap, scheduler):
        """Basic mode only reports SPIDERFIED and UNSPIDERFIED."""
        oms = OverlappingMarkerSpiderfier(gmap, {'basicFormatEvents': True}, scheduler=scheduler)
        statuses = StatusLog(oms)
        markers = place(oms, gmap, 2)
        assert all(statuses[m] == MarkerStatus.UNSPIDERFIED for m in markers)
        assert scheduler.pending() == 0

        oms.handle_marker_click(markers[0])
        assert all(statuses[m] == MarkerStatus.SPIDERFIED for m in markers)
        oms.unspiderfy()
        assert all(statuses[m] == MarkerStatus.UNSPIDERFIED for m in markers)

        statuses.events.clear()
        markers[0].set_position(FAR)
        scheduler.run_all()
        assert {s for _, s in statuses.events} == {MarkerStatus.UNSPIDERFIED}

    def test_basic_mode_needs_no_projection(self, scheduler):
        """Basic recomputation runs before the map is ready."""
        gmap = SimpleMap(zoom=10)
        oms = OverlappingMarkerSpiderfier(gmap, scheduler=scheduler, basic_format_events=True)
        statuses = StatusLog(oms)
        marker = place(oms, gmap, 1)[0]
        statuses.events.clear()
        marker.set_visible(False)
        scheduler.run_all()
        assert statuses.events == [(marker, MarkerStatus.UNSPIDERFIED)]


class TestNotReady:
    """Test behaviour before the map has a projection."""

    def test_click_raises(self, scheduler):
        """A click that needs a neighbourhood scan fails loudly."""
        gmap = SimpleMap(zoom=10)
        oms = OverlappingMarkerSpiderfier(gmap, scheduler=scheduler)
        markers = place(oms, gmap, 2)
        with pytest.raises(ProjectionNotReadyError, match="handle_marker_click"):
            oms.handle_marker_click(markers[0])

    def test_queries_raise(self, scheduler):
        """Neighbour queries fail loudly."""
        gmap = SimpleMap(zoom=10)
        oms = OverlappingMarkerSpiderfier(gmap, scheduler=scheduler)
        markers = place(oms, gmap, 2)
        with pytest.raises(ProjectionNotReadyError, match="neighbors_of"):
            oms.neighbors_of(markers[0])
        with pytest.raises(ProjectionNotReadyError, match="all_with_neighbors"):
            oms.all_with_neighbors()


class TestTracking:
    """Test adding and removing markers."""

    def test_chaining(self, gmap, oms):
        """Tracking methods return the engine."""
        a, b = SimpleMarker(HOME, gmap), SimpleMarker(FAR, gmap)
        assert oms.track(a).track(b).untrack(a) is oms
        assert oms.markers() == [b]

    def test_track_twice(self, gmap, oms):
        """Tracking twice keeps one entry and one click listener."""
        marker = SimpleMarker(HOME, gmap)
        oms.track(marker).track(marker)
        assert oms.markers() == [marker]
        assert marker.listener_count('click') == 1

    def test_queries(self, gmap, oms):
        """Neighbour queries go through the registry."""
        near = place(oms, gmap, 2)
        far = place(oms, gmap, 1, FAR)[0]
        assert oms.neighbors_of(near[0]) == [near[1]]
        assert oms.neighbors_of(far) == []
        assert oms.all_with_neighbors() == near

    def test_untrack_spiderfied(self, gmap, oms):
        """Untracking a cluster member collapses the cluster first."""
        markers = place(oms, gmap, 3)
        oms.handle_marker_click(markers[0])
        oms.untrack(markers[0])

        assert oms.state == EngineState.normal
        assert all(m.get_position() == HOME for m in markers)
        assert markers[0] not in oms.markers()
        assert markers[0].listener_count('click') == 0
        assert oms.handle_marker_click(markers[0]) == Outcome.noop

    def test_untrack_all(self, gmap, oms):
        """untrack_all collapses and forgets everything."""
        markers = place(oms, gmap, 3)
        oms.handle_marker_click(markers[0])
        oms.untrack_all()
        assert oms.state == EngineState.normal
        assert oms.markers() == []
        assert gmap.legs == []
        assert all(m.listener_count('click') == 0 for m in markers)

    def test_add_and_remove_marker(self, gmap, oms):
        """add_marker puts the marker on the map; remove_marker takes it off."""
        marker = SimpleMarker(HOME)
        oms.add_marker(marker)
        assert marker.get_map() is gmap
        assert oms.markers() == [marker]

        oms.remove_marker(marker)
        assert marker.get_map() is None
        assert oms.markers() == []

    def test_remove_all_markers(self, gmap, oms):
        """remove_all_markers takes every marker off the map."""
        markers = [SimpleMarker(HOME) for _ in range(3)]
        for marker in markers:
            oms.add_marker(marker)
        oms.handle_marker_click(markers[0])
        oms.remove_all_markers()
        assert oms.markers() == []
        assert all(m.get_map() is None for m in markers)
        assert all(m.get_position() == HOME for m in markers)


class TestMarkerRelays:
    """Test per-marker event relays."""

    def test_spider_click(self, gmap, oms):
        """on_spider_click runs for plain clicks."""
        marker = SimpleMarker(HOME, gmap)
        received = []
        oms.track(marker, on_spider_click=received.append)
        marker.click('evt')
        assert received == ['evt']

    def test_spider_format(self, gmap, oms):
        """Format events are relayed to the marker."""
        marker = SimpleMarker(HOME, gmap)
        received = []
        marker.add_listener('spider_format', received.append)
        oms.track(marker)
        assert received == [MarkerStatus.UNSPIDERFIABLE]


class TestEngineState:
    """Test the state machine guard."""

    def test_illegal_transition(self, oms):
        """Skipping a state is an error."""
        with pytest.raises(RuntimeError):
            oms._move(EngineState.spiderfied)
        assert oms.state == EngineState.normal

    def test_camel_case_options(self, gmap, scheduler):
        """Options accept camelCase names."""
        oms = OverlappingMarkerSpiderfier(gmap, {'keepSpiderfied': True, 'nearbyDistance': 5}, scheduler=scheduler)
        assert oms.config.keep_spiderfied
        assert oms.config.nearby_distance == 5

    def test_unknown_option(self, gmap, scheduler):
        """Unknown options are rejected."""
        with pytest.raises(TypeError, match="Unknown spiderfier option"):
            OverlappingMarkerSpiderfier(gmap, {'colour': 'red'}, scheduler=scheduler)

    def test_scheduler_required(self, gmap):
        """The host must say where the deferred recomputation runs."""
        with pytest.raises(TypeError):
            OverlappingMarkerSpiderfier(gmap)


def fail_on(status):
    def listener(marker, reported):
        if reported == status:
            raise ValueError(f"listener failed on {status.value}")
    return listener


class TestListenerErrors:
    """Test that a raising listener leaves the engine usable."""

    def test_spiderfy_rolled_back(self, gmap, oms, scheduler):
        """A listener failing mid-spiderfy collapses the partial cluster."""
        markers = place(oms, gmap, 3)
        scheduler.run_all()
        failing = fail_on(MarkerStatus.SPIDERFIED)
        oms.subscribe('format', failing)

        with pytest.raises(ValueError):
            oms.handle_marker_click(markers[0])

        assert oms.state == EngineState.normal
        assert oms.registry.spiderfied_count() == 0
        assert gmap.legs == []
        assert all(m.get_position() == HOME for m in markers)
        assert all(m.listener_count('mouseover') == 0 for m in markers)
        assert scheduler.pending() == 1

    def test_usable_after_spiderfy_error(self, gmap, oms):
        """Once the listener is gone, clicks spiderfy again."""
        markers = place(oms, gmap, 3)
        others = place(oms, gmap, 2, FAR)
        failing = fail_on(MarkerStatus.SPIDERFIED)
        oms.subscribe('format', failing)
        with pytest.raises(ValueError):
            oms.handle_marker_click(markers[0])

        oms.unsubscribe('format', failing)
        assert oms.unspiderfy() == Outcome.noop
        assert oms.handle_marker_click(others[0]) == Outcome.spiderfied
        assert oms.state == EngineState.spiderfied
        assert oms.unspiderfy() == Outcome.unspiderfied

    def test_unspiderfy_completes(self, gmap, oms, scheduler):
        """A listener failing mid-unspiderfy still puts every marker back."""
        markers = place(oms, gmap, 4, z_index=3)
        scheduler.run_all()
        oms.handle_marker_click(markers[0])
        failing = fail_on(MarkerStatus.SPIDERFIABLE)
        oms.subscribe('format', failing)

        with pytest.raises(ValueError):
            oms.unspiderfy()

        assert oms.state == EngineState.normal
        assert oms.registry.spiderfied_count() == 0
        assert gmap.legs == []
        assert all(m.get_position() == HOME for m in markers)
        assert all(m.get_z_index() == 3 for m in markers)
        assert scheduler.pending() == 1

        oms.unsubscribe('format', failing)
        assert oms.handle_marker_click(markers[1]) == Outcome.spiderfied


class TestAsyncioScheduling:
    """Test the engine on an asyncio event loop."""

    def test_track_before_loop_runs(self):
        """Markers tracked during synchronous setup get their statuses once the loop runs."""
        scheduler = AsyncioScheduler()
        try:
            gmap = SimpleMap(zoom=10)
            gmap.idle()
            oms = OverlappingMarkerSpiderfier(gmap, scheduler=scheduler)
            statuses = StatusLog(oms)
            markers = place(oms, gmap, 2)
            assert all(statuses[m] == MarkerStatus.UNSPIDERFIABLE for m in markers)

            scheduler.loop.run_until_complete(asyncio.sleep(0.1))
            assert all(statuses[m] == MarkerStatus.SPIDERFIABLE for m in markers)
        finally:
            scheduler.loop.close()

    def test_inside_running_loop(self):
        """An engine built inside a coroutine recomputes on that loop."""
        async def main():
            gmap = SimpleMap(zoom=10)
            gmap.idle()
            oms = OverlappingMarkerSpiderfier(gmap, scheduler=AsyncioScheduler())
            statuses = StatusLog(oms)
            markers = place(oms, gmap, 2)
            await asyncio.sleep(0.1)
            return [statuses[m] for m in markers]

        assert asyncio.run(main()) == [MarkerStatus.SPIDERFIABLE, MarkerStatus.SPIDERFIABLE]
