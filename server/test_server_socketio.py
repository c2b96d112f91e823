"""Socket.IO surface, driven through Flask-SocketIO's test client."""

import pytest


@pytest.fixture
def server_mod(tmp_path, monkeypatch):
    monkeypatch.setenv('MUD_DB_PATH', str(tmp_path / 'server.db'))
    monkeypatch.setenv('MUD_ADMIN_IDS', 'root')
    monkeypatch.setenv('MUD_START_ROOM', 'hall')
    import server
    server.shutdown()
    yield server
    server.shutdown()


def _contents(client):
    out = []
    for packet in client.get_received():
        if packet['name'] == 'message':
            out.append(packet['args'][0]['content'])
    return out


def _connect(server, user, name):
    return server.socketio.test_client(server.app, query_string=f'user={user}&name={name}')


def test_connect_requires_user(server_mod):
    client = server_mod.socketio.test_client(server_mod.app)
    assert not client.is_connected()


def test_welcome_and_config(server_mod):
    client = _connect(server_mod, 'alice', 'Alice')
    assert client.is_connected()
    lines = _contents(client)
    assert lines[0] == 'Welcome, Alice. You are in Hall.'
    assert lines[1] == '[config] MAX_MESSAGE_LEN=1000'
    client.disconnect()


def test_commands_round_trip_and_broadcast(server_mod):
    root = _connect(server_mod, 'root', 'Root')
    alice = _connect(server_mod, 'alice', 'Alice')
    root.get_received()
    alice.get_received()

    root.emit('message_to_server', {'content': '/item create hall | apple | A red apple | 3'})
    assert _contents(root) == ['Created 3 of apple in Hall']

    alice.emit('message_to_server', {'content': 'take 2 of apple'})
    assert _contents(alice) == ['You took 2 of apple']
    assert _contents(root) == ['Alice took 2 of apple']

    alice.emit('message_to_server', {'content': 'take 5 of apple'})
    assert 'only 1 available' in _contents(alice)[0]


def test_invalid_payloads(server_mod, monkeypatch):
    monkeypatch.setenv('MUD_MAX_MESSAGE_LEN', '10')
    client = _connect(server_mod, 'bob', 'Bob')
    client.get_received()

    client.emit('message_to_server', 'items')
    client.emit('message_to_server', {'content': 'x' * 11})
    client.emit('message_to_server', {'content': 'dance'})
    received = [p['args'][0] for p in client.get_received()]
    assert [p['type'] for p in received] == ['error', 'error', 'error']
    assert received[0]['content'].startswith('Invalid payload')
    assert received[1]['content'].startswith('Message too long')
    assert received[2]['content'].startswith('Invalid command')


def test_admin_flag_from_environment(server_mod):
    root = _connect(server_mod, 'root', 'Root')
    root.get_received()
    root.emit('message_to_server', {'content': 'help'})
    assert 'Admin:' in _contents(root)[0]


def test_cors_and_admin_parsing(server_mod):
    assert server_mod._parse_cors_origins(None) == '*'
    assert server_mod._parse_cors_origins(' a.com, b.com ') == ['a.com', 'b.com']
    assert server_mod._parse_admin_ids('root, ,ops') == {'root', 'ops'}
