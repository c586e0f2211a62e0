"""
Tests for EntityInstance: state machine, dirty tracking, flush and destroy.
"""

import pytest

from frankenstein.errors import InstanceDestroyedError, SourcePartialFailureError, ValidationError
from frankenstein.models import FieldDescriptor, InstanceState, ModelDefinition, SourceBinding
from frankenstein.repositories import InMemorySource
from frankenstein.services import ModelEngine


class TestStateMachine:
    """NEW -> PERSISTED -> DIRTY -> PERSISTED -> DESTROYED"""

    @pytest.mark.asyncio
    async def test_new_instance_flush_creates(self, cars, cars_table):
        car = cars.new({'manufacturer': 'Toyota', 'model_number': 4})
        assert car.state == InstanceState.NEW
        assert car.identity_key is None

        await car.flush_changes()

        assert car.state == InstanceState.PERSISTED
        assert car.identity_key == 1
        assert car.id == 1
        assert len(cars_table) == 1

    @pytest.mark.asyncio
    async def test_setter_marks_dirty(self, cars):
        car = await cars.create({'manufacturer': 'Toyota'})

        car.manufacturer = 'Lexus'

        assert car.state == InstanceState.DIRTY
        assert car.dirty == {'manufacturer'}
        assert car['manufacturer'] == 'Lexus'

    @pytest.mark.asyncio
    async def test_flush_returns_to_persisted(self, cars):
        car = await cars.create({'manufacturer': 'Toyota'})
        car['model_number'] = 7

        await car.flush_changes()

        assert car.state == InstanceState.PERSISTED
        assert (await cars.get(1)).model_number == 7

    @pytest.mark.asyncio
    async def test_read_instance_is_persisted(self, cars):
        await cars.create({'manufacturer': 'Toyota'})

        car = await cars.get(1)

        assert car.state == InstanceState.PERSISTED
        assert repr(car) == "<Car 1 PERSISTED>"


class TestFlushChanges:

    @pytest.mark.asyncio
    async def test_second_flush_writes_nothing(self, cars, cars_table, car_photos):
        """Idempotence: no intervening mutation, no second write."""
        car = await cars.create({'manufacturer': 'Toyota'})
        car.manufacturer = 'Lexus'

        await car.flush_changes()
        writes = len(cars_table.calls('update')) + len(car_photos.calls())
        await car.flush_changes()

        assert len(cars_table.calls('update')) + len(car_photos.calls()) == writes
        assert len(cars_table.calls('update')) == 1

    @pytest.mark.asyncio
    async def test_clean_instance_flush_is_noop(self, cars, call_log):
        await cars.create({'manufacturer': 'Toyota'})
        car = await cars.get(1)
        call_log.clear()

        await car.flush_changes()

        assert call_log == []

    @pytest.mark.asyncio
    async def test_flush_writes_only_dirty_fields(self, cars, cars_table):
        await cars.create({'manufacturer': 'Toyota', 'model_number': 4})
        car = await cars.get(1)
        cars_table.records[1]['model_number'] = 99

        car.manufacturer = 'Lexus'
        await car.flush_changes()

        assert cars_table.records[1] == {'id': 1, 'manufacturer': 'Lexus', 'model_number': 99}

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_failed_fields_dirty(self, cars, car_photos):
        car = await cars.create({'manufacturer': 'Toyota', 'photos': [{'url': 'a.jpg'}]})
        car.manufacturer = 'Lexus'
        car.photos = [{'url': 'b.jpg'}]
        car_photos.fail_on = {'delete'}

        with pytest.raises(SourcePartialFailureError):
            await car.flush_changes()

        assert car.state == InstanceState.DIRTY
        assert car.dirty == {'photos'}

        # Caller retries once the source is back
        car_photos.fail_on = set()
        await car.flush_changes()

        assert car.state == InstanceState.PERSISTED
        assert (await cars.get(1)).photos == [{'url': 'b.jpg'}]

    @pytest.mark.asyncio
    async def test_partial_create_then_retry(self, cars, car_photos):
        car = cars.new({'manufacturer': 'Toyota', 'photos': [{'url': 'a.jpg'}]})
        car_photos.fail_on = {'create'}

        with pytest.raises(SourcePartialFailureError):
            await car.flush_changes()

        assert car.identity_key == 1
        assert car.dirty == {'photos'}

        car_photos.fail_on = set()
        await car.flush_changes()

        assert car.state == InstanceState.PERSISTED
        assert (await cars.get(1)).photos == [{'url': 'a.jpg'}]


class TestFieldAccess:

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, cars):
        car = await cars.create({'manufacturer': 'Toyota'})

        with pytest.raises(ValidationError):
            car.set('colour', 'red')
        with pytest.raises(AttributeError):
            car.colour

    @pytest.mark.asyncio
    async def test_identity_is_immutable(self, cars):
        car = await cars.create({'manufacturer': 'Toyota'})

        with pytest.raises(ValidationError):
            car.id = 5
        car.id = 1
        assert car.state == InstanceState.PERSISTED

    @pytest.mark.asyncio
    async def test_update_sets_many(self, cars):
        car = await cars.create({'manufacturer': 'Toyota'})

        car.update({'manufacturer': 'Lexus', 'model_number': 2})

        assert car.dirty == {'manufacturer', 'model_number'}

    @pytest.mark.asyncio
    async def test_reload_discards_changes(self, cars):
        car = await cars.create({'manufacturer': 'Toyota'})
        car.manufacturer = 'Lexus'

        await car.reload()

        assert car.manufacturer == 'Toyota'
        assert car.state == InstanceState.PERSISTED

    @pytest.mark.asyncio
    async def test_to_document_nests_dotted_fields(self):
        definition = ModelDefinition(
            name='Account',
            fields=[
                FieldDescriptor('id', 'integer'),
                FieldDescriptor('owner.email', source_field='owner_email'),
                FieldDescriptor('owner.name', source_field='owner_name'),
            ],
            sources=[SourceBinding('Accounts', is_primary=True)],
        )
        store = InMemorySource('Accounts')
        accounts = ModelEngine(definition, {'Accounts': store})

        await accounts.create({'owner': {'email': 'ada@example.com', 'name': 'Ada'}})

        assert store.records[1] == {'id': 1, 'owner_email': 'ada@example.com', 'owner_name': 'Ada'}
        account = await accounts.get(1)
        assert account.to_document() == {
            'id': 1,
            'owner': {'email': 'ada@example.com', 'name': 'Ada'},
        }


class TestDestroy:

    @pytest.mark.asyncio
    async def test_destroy_is_terminal(self, cars, cars_table):
        car = await cars.create({'manufacturer': 'Toyota'})

        await car.destroy()

        assert car.state == InstanceState.DESTROYED
        assert len(cars_table) == 0
        with pytest.raises(InstanceDestroyedError):
            car.manufacturer = 'Lexus'
        with pytest.raises(InstanceDestroyedError):
            await car.flush_changes()
        with pytest.raises(InstanceDestroyedError):
            await car.destroy()

    @pytest.mark.asyncio
    async def test_destroy_new_instance_does_no_io(self, cars, call_log):
        car = cars.new({'manufacturer': 'Toyota'})

        await car.destroy()

        assert car.state == InstanceState.DESTROYED
        assert call_log == []

    @pytest.mark.asyncio
    async def test_failed_destroy_leaves_instance_usable(self, cars, car_photos):
        car = await cars.create({'manufacturer': 'Toyota'})
        car_photos.fail_on = {'delete'}

        with pytest.raises(SourcePartialFailureError):
            await car.destroy()

        assert car.state == InstanceState.PERSISTED
