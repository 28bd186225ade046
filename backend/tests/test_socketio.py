def events_named(received, name):
    return [msg['args'][0] for msg in received if msg['name'] == name]


def create_room(client, name='Alice'):
    return client.post('/api/rooms', json={'hostName': name, 'settings': {'playerCount': 2, 'cardsPerPlayer': 1}}).get_json()


def test_subscribe_sends_current_snapshot(client, sio_client):
    created = create_room(client)
    ack = sio_client.emit('room:subscribe', {'roomId': created['roomId'].upper()}, callback=True)
    assert ack == {'ok': True, 'channel': f"room-{created['roomId']}"}

    snapshots = events_named(sio_client.get_received(), 'room:updated')
    assert snapshots == [{'roomId': created['roomId'], 'room': created['room']}]


def test_subscribe_rejects_bad_channel(sio_client):
    assert sio_client.emit('room:subscribe', {'channel': 'lobby'}, callback=True)['ok'] is False
    assert sio_client.emit('room:subscribe', {}, callback=True)['ok'] is False


def test_subscriber_receives_mutations(client, sio_client):
    created = create_room(client)
    code = created['roomId']
    sio_client.emit('room:subscribe', {'channel': f'room-{code}'}, callback=True)
    sio_client.get_received()

    bob = client.post(f'/api/rooms/{code}/join', json={'name': 'Bob'}).get_json()['playerId']
    client.post(f'/api/rooms/{code}/start', json={'playerId': created['playerId']})
    client.delete(f'/api/rooms/{code}')

    received = sio_client.get_received()
    assert [msg['name'] for msg in received] == ['room:updated', 'room:state', 'room:deleted']
    joined = received[0]['args'][0]['room']
    assert [p['id'] for p in joined['players']] == [created['playerId'], bob]
    assert received[1]['args'][0]['room']['gameState'] == 'card-selection'
    assert received[2]['args'][0] == {'roomId': code, 'room': None}


def test_unsubscribe_stops_delivery(client, sio_client):
    code = create_room(client)['roomId']
    sio_client.emit('room:subscribe', {'roomId': code}, callback=True)
    assert sio_client.emit('room:unsubscribe', {'roomId': code}, callback=True)['ok'] is True
    sio_client.get_received()

    client.post(f'/api/rooms/{code}/join', json={'name': 'Bob'})
    assert sio_client.get_received() == []


def test_relayed_broadcast_reaches_subscribers(client, sio_client):
    code = create_room(client)['roomId']
    sio_client.emit('room:subscribe', {'roomId': code}, callback=True)
    sio_client.get_received()

    snapshot = client.get(f'/api/rooms/{code}').get_json()
    snapshot['timer'] = 30
    client.post('/api/broadcast', json={
        'channel': f'room-{code}',
        'event': 'room:updated',
        'data': {'roomId': code, 'room': snapshot},
    })

    relayed = events_named(sio_client.get_received(), 'room:updated')
    assert relayed == [{'roomId': code, 'room': snapshot}]
