"""
Tests for the Relationship Resolver (pure, no I/O).
"""

import pytest

from frankenstein.errors import ValidationError
from frankenstein.models import FieldDescriptor, FieldType, ModelDefinition, Relationship, SourceBinding
from frankenstein.services import relationship_resolver as resolver


@pytest.fixture
def definition():
    return ModelDefinition('Car', [
        FieldDescriptor('id', FieldType.INTEGER),
        FieldDescriptor('maker', source_field='manufacturer_name'),
        FieldDescriptor('engine', source_field='details.engine'),
        FieldDescriptor('photos', FieldType.ARRAY, item_fields={'url': 'photo_url'}),
        FieldDescriptor('feature_ids', FieldType.ARRAY),
        FieldDescriptor('features', FieldType.ARRAY),
        FieldDescriptor('notes', FieldType.ARRAY),
    ], [
        SourceBinding('CarsTable', is_primary=True),
        SourceBinding('Specs', owned_fields={'engine'}, join_key={'id': 'car_id'}),
        SourceBinding('CarPhotos', Relationship.ONE_TO_MANY, owned_fields={'photos'},
                      join_key={'id': 'car_id'}, order_by=[('position', 1)]),
        SourceBinding('Features', Relationship.MANY_TO_MANY, owned_fields={'features'},
                      join_key={'feature_ids': 'code'}),
        SourceBinding('Notes', Relationship.ONE_TO_MANY, owned_fields={'notes'},
                      join_key={'id': 'car_id'}),
    ])


def binding(definition, name):
    return definition.sources[name]


class TestQueries:

    def test_foreign_query_single_parent(self, definition):
        query = resolver.foreign_query(binding(definition, 'CarPhotos'), [{'id': 1}])
        assert query == {'car_id': 1}

    def test_foreign_query_many_parents(self, definition):
        query = resolver.foreign_query(binding(definition, 'CarPhotos'), [{'id': 1}, {'id': 2}, {'id': 1}])
        assert query == {'car_id': {'$in': [1, 2]}}

    def test_foreign_query_many_to_many(self, definition):
        parents = [{'feature_ids': ['abs', 'gps']}, {'feature_ids': ['gps']}]
        query = resolver.foreign_query(binding(definition, 'Features'), parents)
        assert query == {'code': {'$in': ['abs', 'gps']}}

    def test_foreign_query_without_join_values(self, definition):
        assert resolver.foreign_query(binding(definition, 'Features'), [{'id': 1}]) is None

    def test_query_from_filter(self, definition):
        photos = binding(definition, 'CarPhotos')
        assert resolver.query_from_filter(photos, {'id': 3}) == {'car_id': 3}
        assert resolver.query_from_filter(photos, {'id': {'$in': [1, 2]}}) == {'car_id': {'$in': [1, 2]}}
        assert resolver.query_from_filter(photos, {'id': {'$gt': 1}}) is None
        assert resolver.query_from_filter(photos, {'maker': 'Toyota'}) is None


class TestFold:

    def test_one_to_one_rekeys_nested_source_field(self, definition):
        records = [{'car_id': 1, 'details': {'engine': 'V6'}}, {'car_id': 2, 'details': {'engine': 'V8'}}]

        folded = resolver.fold(definition, binding(definition, 'Specs'), {'id': 2}, records)

        assert folded == {'engine': 'V8'}

    def test_one_to_one_missing_is_none(self, definition):
        folded = resolver.fold(definition, binding(definition, 'Specs'), {'id': 3}, [])
        assert folded == {'engine': None}

    def test_one_to_many_orders_and_rekeys(self, definition):
        records = [
            {'car_id': 1, 'photo_url': 'b.jpg', 'position': 2},
            {'car_id': 2, 'photo_url': 'x.jpg', 'position': 1},
            {'car_id': 1, 'photo_url': 'a.jpg', 'position': 1},
        ]

        folded = resolver.fold(definition, binding(definition, 'CarPhotos'), {'id': 1}, records)

        assert folded == {'photos': [{'url': 'a.jpg'}, {'url': 'b.jpg'}]}

    def test_one_to_many_without_item_fields_strips_join(self, definition):
        records = [{'car_id': 1, 'text': 'serviced'}]

        folded = resolver.fold(definition, binding(definition, 'Notes'), {'id': 1}, records)

        assert folded == {'notes': [{'text': 'serviced'}]}

    def test_many_to_many_follows_parent_key_order(self, definition):
        records = [{'code': 'abs', 'label': 'ABS'}, {'code': 'gps', 'label': 'GPS'}]
        parent = {'id': 1, 'feature_ids': ['gps', 'abs', 'gps', 'missing']}

        folded = resolver.fold(definition, binding(definition, 'Features'), parent, records)

        assert folded == {'features': [
            {'code': 'gps', 'label': 'GPS'},
            {'code': 'abs', 'label': 'ABS'},
        ]}


class TestWrites:

    def test_to_raw_uses_source_fields(self, definition):
        raw = resolver.to_raw(definition, 'Specs', {'engine': 'V6'})
        assert raw == {'details': {'engine': 'V6'}}

    def test_rekey_omits_absent_fields(self, definition):
        assert resolver.rekey(definition, 'CarsTable', {'id': 1}) == {'id': 1}
        assert resolver.rekey(definition, 'CarsTable', {'id': 1, 'manufacturer_name': 'Kia'}) == {
            'id': 1, 'maker': 'Kia',
        }

    def test_to_raw_query(self, definition):
        assert resolver.to_raw_query(definition, {'maker': {'$ne': 'Kia'}}) == {
            'manufacturer_name': {'$ne': 'Kia'},
        }

    def test_item_to_raw_links_parent(self, definition):
        raw = resolver.item_to_raw(
            definition, binding(definition, 'CarPhotos'), {'url': 'a.jpg', 'ignored': 1}, {'id': 4},
        )
        assert raw == {'photo_url': 'a.jpg', 'car_id': 4}

    def test_item_to_raw_rejects_scalars(self, definition):
        with pytest.raises(ValidationError):
            resolver.item_to_raw(definition, binding(definition, 'CarPhotos'), 'a.jpg', {'id': 4})

    def test_keys_from_items(self, definition):
        keys = resolver.keys_from_items(
            definition, binding(definition, 'Features'), [{'code': 'abs'}, 'gps', {'code': 'abs'}],
        )
        assert keys == ['abs', 'gps']

    def test_keys_from_items_requires_key(self, definition):
        with pytest.raises(ValidationError):
            resolver.keys_from_items(definition, binding(definition, 'Features'), [{'label': 'ABS'}])
