from monikers.game.models import Card, GameState, Room, Settings, Team
from monikers.game.snapshot import JsonFileSnapshot, MemorySnapshot
from monikers.game.store import RoomStore
from monikers.realtime.events import RoomEvent


def test_create_and_join(store):
    room = store.create_room('Alice', settings=Settings(player_count=2, cards_per_player=1))
    bob = store.join_room(room.id, 'Bob')
    assert bob is not None

    rooms = store.get_all_rooms()
    assert len(rooms) == 1
    assert [p.name for p in rooms[0].players] == ['Alice', 'Bob']
    host = rooms[0].players[0]
    assert host.is_host and host.team is Team.TEAM1
    assert rooms[0].find_player(bob.id).team is None
    assert rooms[0].game_state is GameState.WAITING


def test_create_is_debounced_per_host(store, clock):
    first = store.create_room('Alice')
    again = store.create_room('Alice')
    assert again.id == first.id

    other = store.create_room('Bob')
    assert other.id != first.id

    clock.advance(301)
    later = store.create_room('Alice')
    assert later.id != first.id
    assert len(store.get_all_rooms()) == 3


def test_join_rejections(store):
    room = store.create_room('Alice', settings=Settings(player_count=2))
    assert store.join_room(room.id, '   ') is None
    assert store.join_room(room.id, 'alice') is None
    assert store.join_room('nope', 'Bob') is None
    assert store.join_room(room.id, 'Bob') is not None
    # full
    assert store.join_room(room.id, 'Cara') is None


def test_join_rejected_once_game_started(store):
    room = store.create_room('Alice', settings=Settings(player_count=4))
    assert store.update_game_state(room.id, GameState.CARD_SELECTION)
    assert store.join_room(room.id, 'Bob') is None


def test_room_ids_are_case_insensitive(store):
    room = store.create_room('Alice')
    assert store.get_room(room.id.upper()).id == room.id


def test_leave_promotes_first_remaining_player(store):
    room = store.create_room('Alice', settings=Settings(player_count=3))
    bob = store.join_room(room.id, 'Bob')
    store.join_room(room.id, 'Cara')

    assert store.leave_room(room.id, room.host_id)
    after = store.get_room(room.id)
    assert after.host_id == bob.id
    assert [p.is_host for p in after.players] == [True, False]
    assert after.players[0].team is Team.TEAM1


def test_leave_adjusts_current_player_index(store):
    room = store.create_room('Alice', settings=Settings(player_count=3))
    store.join_room(room.id, 'Bob')
    cara = store.join_room(room.id, 'Cara')
    store.update_current_player(room.id, 2)

    bob_id = store.get_room(room.id).players[1].id
    assert store.leave_room(room.id, bob_id)
    after = store.get_room(room.id)
    assert after.current_player.id == cara.id


def test_last_player_leaving_deletes_room(store, bus):
    room = store.create_room('Alice')
    bus.clear()
    assert store.leave_room(room.id, room.host_id)
    assert store.get_room(room.id) is None
    assert bus.events() == [RoomEvent.DELETED.value]
    assert not store.leave_room(room.id, room.host_id)


def test_delete_room(store, bus):
    assert store.delete_room('missing') is False
    assert bus.messages == []

    room = store.create_room('Alice')
    bus.clear()
    assert store.delete_room(room.id) is True
    assert store.get_room(room.id) is None
    channel, event, data = bus.messages[0]
    assert (channel, event) == (f'room-{room.id}', 'room:deleted')
    assert data == {'roomId': room.id, 'room': None}


def test_team_assignment_respects_max_team_size(store):
    room = store.create_room('Alice', settings=Settings(player_count=2))
    bob = store.join_room(room.id, 'Bob')

    assert store.assign_team_to_player(room.id, bob.id, Team.TEAM1) is False
    assert store.get_available_teams(room.id) == [Team.TEAM2]
    assert store.is_team_available(room.id, Team.TEAM2)
    assert store.assign_team_to_player(room.id, bob.id, Team.TEAM2) is True
    assert store.get_available_teams(room.id) == []


def test_team_assignment_locked_once_playing(store):
    room = store.create_room('Alice', settings=Settings(player_count=2))
    bob = store.join_room(room.id, 'Bob')
    store.update_game_state(room.id, GameState.PLAYING)
    assert store.assign_team_to_player(room.id, bob.id, Team.TEAM2) is False


def test_game_state_is_monotonic(store, bus):
    room = store.create_room('Alice')
    bus.clear()
    assert store.update_game_state(room.id, GameState.PLAYING)
    assert bus.events() == ['room:state']
    assert store.update_game_state(room.id, GameState.WAITING) is False
    assert store.update_game_state(room.id, GameState.FINISHED)
    for state in (GameState.WAITING, GameState.CARD_SELECTION, GameState.PLAYING):
        assert store.update_game_state(room.id, state) is False
    assert store.get_room(room.id).game_state is GameState.FINISHED


def test_mutate_rejects_backward_moves(store):
    room = store.create_room('Alice')
    store.update_game_state(room.id, GameState.PLAYING)

    def _rewind(r):
        r.game_state = GameState.WAITING
        return True

    assert store.mutate(room.id, _rewind) is None
    assert store.get_room(room.id).game_state is GameState.PLAYING


def test_field_updates_bump_updated_at_and_publish(store, bus, clock):
    room = store.create_room('Alice', settings=Settings(player_count=2))
    bus.clear()
    clock.advance(50)

    assert store.update_timer(room.id, 42)
    after = store.get_room(room.id)
    assert after.timer == 42
    assert after.updated_at == room.updated_at + 50
    assert bus.events() == ['room:updated']
    assert bus.messages[0][2]['room']['timer'] == 42


def test_field_updates_on_missing_room_are_noops(store, bus):
    assert store.update_timer('ghost', 10) is False
    assert store.update_turn_started('ghost', True) is False
    assert store.update_current_team('ghost', Team.TEAM2) is False
    assert store.update_used_cards('ghost', ['x']) is False
    assert store.update_current_card('ghost', None) is False
    assert bus.messages == []


def test_update_settings(store):
    room = store.create_room('Alice')
    store.join_room(room.id, 'Bob')
    assert store.update_settings(room.id, player_count=6, cards_per_player=3)
    assert store.get_room(room.id).settings == Settings(player_count=6, cards_per_player=3)
    assert store.update_settings(room.id, player_count=1) is False
    assert store.update_settings(room.id, cards_per_player=0) is False


def test_player_cards_cannot_overlap(store):
    room = store.create_room('Alice')
    bob = store.join_room(room.id, 'Bob')
    pizza = Card(id='Pizza', text='Pizza')
    assert store.update_player_cards(room.id, room.host_id, [pizza])
    assert store.update_player_cards(room.id, bob.id, [pizza]) is False
    assert store.update_player_cards(room.id, bob.id, [Card(id='Moon', text='Moon')] * 2) is False
    assert [c.text for c in store.get_all_selected_cards(room.id)] == ['Pizza']


def test_scores_are_append_only(store):
    room = store.create_room('Alice')
    a = Card(id='a', text='a', level=2)
    b = Card(id='b', text='b', level=1)
    assert store.update_scores(room.id, {Team.TEAM1: {1: [a]}, Team.TEAM2: {}})
    assert store.update_scores(room.id, {Team.TEAM1: {1: [a, b]}, Team.TEAM2: {}})
    assert store.update_scores(room.id, {Team.TEAM1: {1: [b]}, Team.TEAM2: {}}) is False
    assert store.get_room(room.id).scores[Team.TEAM1][1] == [a, b]


def test_small_field_updates(store):
    room = store.create_room('Alice')
    bob = store.join_room(room.id, 'Bob')
    assert store.update_current_round(room.id, 2)
    assert store.update_current_round(room.id, 4) is False
    assert store.update_current_team(room.id, Team.TEAM2)
    assert store.update_round_status(room.id, True, True)
    assert store.update_used_cards(room.id, ['x', 'x', 'y'])
    assert store.update_current_card(room.id, Card(id='x', text='x'))
    assert store.update_player_timer(room.id, bob.id, 17)
    assert store.update_player_timer(room.id, 'ghost', 17) is False
    assert store.update_player_skip_count(room.id, bob.id, 1)
    assert store.update_turn_started(room.id, True)
    assert store.update_current_player(room.id, 1)
    assert store.update_current_player(room.id, 5) is False

    after = store.get_room(room.id)
    assert after.current_round == 2
    assert after.current_team is Team.TEAM2
    assert after.is_round_active and after.round_started
    assert after.used_cards == ['x', 'y']
    assert after.current_card.id == 'x'
    assert after.player_timers[bob.id] == 17
    assert after.player_skip_counts[bob.id] == 1
    assert after.turn_started
    assert after.current_player.id == bob.id


def test_apply_snapshot_is_idempotent_and_silent(store, bus):
    room = store.create_room('Alice')
    bus.clear()
    incoming = store.get_room(room.id)
    incoming.timer = 33
    incoming.updated_at += 10

    assert store.apply_snapshot(incoming.to_dict())
    first = store.get_room(room.id).to_dict()
    assert store.apply_snapshot(incoming.to_dict())
    assert store.get_room(room.id).to_dict() == first
    assert first['timer'] == 33
    assert bus.messages == []


def test_apply_snapshot_can_reject_stale(store):
    room = store.create_room('Alice')
    stale = store.get_room(room.id)
    stale.timer = 5
    stale.updated_at -= 1
    assert store.apply_snapshot(stale, reject_stale=True) is False
    assert store.apply_snapshot(stale) is True
    assert store.get_room(room.id).timer == 5


def test_sweep_idle(store, clock):
    old = store.create_room('Alice')
    clock.advance(10_000)
    fresh = store.create_room('Bob')
    assert store.sweep_idle(5_000) == [old.id]
    assert store.get_room(fresh.id) is not None


def test_store_reloads_snapshot_written_elsewhere():
    snapshot = MemorySnapshot()
    writer = RoomStore(snapshot=snapshot)
    reader = RoomStore(snapshot=snapshot)
    room = writer.create_room('Alice')
    assert reader.get_room(room.id) is not None


def test_json_snapshot_survives_restart(tmp_path):
    path = tmp_path / 'rooms.json'
    path.write_text('{"other_key": {"keep": true}}', encoding='utf-8')

    first = RoomStore(snapshot=JsonFileSnapshot(path))
    room = first.create_room('Alice')
    first.join_room(room.id, 'Bob')

    second = RoomStore(snapshot=JsonFileSnapshot(path))
    restored = second.get_room(room.id)
    assert [p.name for p in restored.players] == ['Alice', 'Bob']
    assert '"other_key"' in path.read_text(encoding='utf-8')


def test_json_snapshot_ignores_corrupt_file(tmp_path):
    path = tmp_path / 'rooms.json'
    path.write_text('{not json', encoding='utf-8')
    store = RoomStore(snapshot=JsonFileSnapshot(path))
    assert store.get_all_rooms() == []


def test_room_round_trips_through_dict(store):
    room = store.create_room('Alice')
    store.update_scores(room.id, {Team.TEAM1: {1: [Card(id='a', text='a', level=3)]}, Team.TEAM2: {}})
    data = store.get_room(room.id).to_dict()
    assert data['scores']['team1'] == {'1': [{'id': 'a', 'text': 'a', 'sourceRound': 1, 'description': '', 'level': 3}]}
    assert Room.from_dict(data).to_dict() == data


def test_create_debounce_forgets_expired_hosts(store, clock):
    store.create_room('Alice')
    clock.advance(301)
    store.create_room('Bob')
    assert list(store._last_created) == ['bob']
