"""Command text routing: parsing, dispatch and emission."""

import pytest

from constants import ERROR_NOT_CONNECTED, MESSAGE_OUT
from errors import ValidationError
from inventory_router import USAGE, handle_message, help_text, try_handle
from parse_utils import ALL, parse_bool, parse_command, parse_quantity, split_quantity


class Outbox:
    def __init__(self):
        self.sent = []

    def __call__(self, event, payload):
        self.sent.append((event, payload))

    @property
    def contents(self):
        return [p['content'] for _, p in self.sent]

    @property
    def types(self):
        return [p['type'] for _, p in self.sent]


def test_parse_command_clauses():
    cmd = parse_command('/Take 2 of apple IN Great Hall', ['in'])
    assert cmd.verb == 'take'
    assert cmd.head == '2 of apple'
    assert cmd.clause('in') == 'Great Hall'
    assert cmd.clause('to') is None


def test_parse_command_quotes_group_words():
    cmd = parse_command('give "jar in a box" to bob', ['to', 'in'])
    assert cmd.head == 'jar in a box'
    assert cmd.clauses == {'to': 'bob'}
    assert parse_command('   ').verb == ''


def test_quantity_parsing():
    assert split_quantity('2 of apple') == (2, 'apple')
    assert split_quantity('all of old map') == (ALL, 'old map')
    assert split_quantity('old map') == (1, 'old map')
    assert split_quantity('bag of holding') == (1, 'bag of holding')
    assert split_quantity('2 of bag of holding') == (2, 'bag of holding')
    assert parse_quantity('ALL') is ALL
    for bad in ('0', '-4', 'many'):
        with pytest.raises(ValidationError):
            parse_quantity(bad)
    with pytest.raises(ValidationError):
        split_quantity('')


def test_parse_bool():
    assert parse_bool('Yes') is True
    assert parse_bool('off') is False
    with pytest.raises(ValidationError):
        parse_bool('maybe')


@pytest.mark.asyncio
async def test_take_command_end_to_end(ctx, broadcasts):
    out = Outbox()
    assert await try_handle(ctx, 'alice', 'take 2 of apple', out)
    assert out.sent == [(MESSAGE_OUT, {'type': 'system', 'content': 'You took 2 of apple'})]
    assert broadcasts.calls == [('hall', {'type': 'system', 'content': 'Alice took 2 of apple'}, 'alice')]


@pytest.mark.asyncio
async def test_slash_prefix_and_give(ctx, broadcasts):
    out = Outbox()
    assert await try_handle(ctx, 'alice', '/give all of coin to bob', out)
    assert out.contents == ['You gave Bob 5 of coin']
    assert broadcasts.contents() == ['Alice gave Bob 5 of coin']


@pytest.mark.asyncio
async def test_bad_quantity_is_an_error_without_side_effects(ctx, broadcasts):
    out = Outbox()
    assert await try_handle(ctx, 'alice', 'take 0 of apple', out)
    assert out.types == ['error']
    assert out.contents == ['Quantity must be at least 1']
    assert broadcasts.calls == []
    assert not ctx.locks.table


@pytest.mark.asyncio
async def test_give_without_target(ctx):
    out = Outbox()
    await try_handle(ctx, 'alice', 'give torch', out)
    assert out.contents == ['Usage: give [<n> of] <item> to <user>']


@pytest.mark.asyncio
async def test_take_five_apples_reports_three(ctx):
    out = Outbox()
    await try_handle(ctx, 'alice', 'take 5 of apple', out)
    assert out.types == ['error']
    assert '3' in out.contents[0]


@pytest.mark.asyncio
async def test_read_commands(ctx):
    out = Outbox()
    await try_handle(ctx, 'alice', 'items', out)
    await try_handle(ctx, 'alice', 'inspect apple, torch', out)
    await try_handle(ctx, 'alice', 'inv', out)
    await try_handle(ctx, 'alice', 'consume torch', out)
    assert out.contents == [
        'Items in Hall:\napple (3)\nkey (1)',
        '**apple**: A red apple (3)\n**torch**: A burning torch (3)',
        'You are carrying:\ntorch (3)\ncoin (5)',
        'You consumed 1 of torch',
    ]


@pytest.mark.asyncio
async def test_admin_item_command_keeps_free_text(ctx):
    out = Outbox()
    await try_handle(ctx, 'root', '/item create hall | note | Says "hi", in ink | 2', out)
    assert out.contents == ['Created 2 of note in Hall']
    assert ctx.rooms.get('hall').items.get('note').description == 'Says "hi", in ink'


@pytest.mark.asyncio
async def test_help_lists_admin_commands_only_for_admins(ctx):
    out = Outbox()
    await try_handle(ctx, 'alice', 'help', out)
    await try_handle(ctx, 'root', 'help', out)
    player_help, admin_help = out.contents
    assert 'Admin:' not in player_help and 'Admin:' in admin_help
    assert len(help_text(True).splitlines()) == len(USAGE) + 2


@pytest.mark.asyncio
async def test_unknown_and_unauthenticated_input(ctx):
    out = Outbox()
    assert not await try_handle(ctx, 'alice', 'dance wildly', out)
    assert not await try_handle(ctx, 'alice', '   ', out)
    assert out.sent == []
    await handle_message(ctx, 'alice', 'dance wildly', out)
    assert out.types == ['error']
    assert await try_handle(ctx, None, 'items', out)
    assert await try_handle(ctx, 'ghost', 'items', out)
    assert out.contents[-2:] == [ERROR_NOT_CONNECTED, ERROR_NOT_CONNECTED]


@pytest.mark.asyncio
async def test_item_names_containing_of(ctx):
    out = Outbox()
    await try_handle(ctx, 'root', '/item create hall | bag of holding | Bigger inside | 2', out)
    await try_handle(ctx, 'alice', 'take "bag of holding"', out)
    await try_handle(ctx, 'alice', 'take 1 of bag of holding', out)
    assert out.contents == [
        'Created 2 of bag of holding in Hall',
        'You took 1 of bag of holding',
        'You took 1 of bag of holding',
    ]
    assert 'bag of holding' not in ctx.rooms.get('hall').items
