"""
Unit tests for serial forms

Only the source travels:
- serialize() -> {'source': ...}
- deserialize() compiles the source exactly like construction
- JSON and pickle both go through the serial form
"""

import json
import pickle

import pytest

from callable_primitive.core.compiler import PythonCompiler


class TaggingCompiler(PythonCompiler):
    """Picklable custom backend used to check backend round trips"""

    def __init__(self, tag='custom'):
        super().__init__()
        self.tag = tag

    def __getstate__(self):
        return {'tag': self.tag}

    def __setstate__(self, state):
        self.__init__(tag=state['tag'])


class TestSerialize:
    """Test producing serial forms"""

    def test_serialize_contains_only_source(self):
        """serialize() -> {'source': '|i| i ** 2'}"""
        from callable_primitive import DeferredCallable

        square = DeferredCallable('|i| i ** 2')

        assert square.serialize() == {'source': '|i| i ** 2'}

    def test_serialize_after_set_source(self):
        """The serial form follows the current source"""
        from callable_primitive import DeferredCallable

        deferred = DeferredCallable('|i| i ** 2')
        deferred.set_source('|i| i ** 3')

        assert deferred.serialize() == {'source': '|i| i ** 3'}

    def test_serialize_returns_new_dict(self):
        """Mutating a returned form doesn't touch the instance"""
        from callable_primitive import DeferredCallable

        deferred = DeferredCallable('|i| i ** 2')
        form = deferred.serialize()
        form['source'] = '|i| 0'

        assert deferred.source == '|i| i ** 2'
        assert deferred(3) == 9


class TestDeserialize:
    """Test rebuilding from serial forms"""

    def test_round_trip_scenario(self):
        """serialize, deserialize, call(4) -> 16"""
        from callable_primitive import DeferredCallable

        form = DeferredCallable('|i| i ** 2').serialize()
        rebuilt = DeferredCallable.deserialize(form)

        assert rebuilt(4) == 16
        assert rebuilt.source == '|i| i ** 2'

    def test_round_trip_law(self):
        """Rebuilt callables behave like the originals"""
        from callable_primitive import DeferredCallable

        cases = [
            ('|i| i ** 2', [(0,), (3,), (-7,)]),
            ('|a, b=10| a - b', [(1,), (1, 2)]),
            ('|s| s.upper()[::-1]', [('abc',), ('',)]),
            ('|xs|\n    seen = set()\n    [x for x in xs if not (x in seen or seen.add(x))]',
             [([1, 2, 1, 3, 2],)]),
            ('|| {"k": [1, 2]}', [()]),
        ]

        for source, arg_sets in cases:
            original = DeferredCallable(source)
            rebuilt = DeferredCallable.deserialize(original.serialize())
            for args in arg_sets:
                assert rebuilt(*args) == original(*args)

    def test_deserialize_compiles_once(self):
        """deserialize compiles through the given backend like construction"""
        from callable_primitive import DeferredCallable

        compiler = TaggingCompiler()
        rebuilt = DeferredCallable.deserialize({'source': '|i| i'}, compiler=compiler)

        assert rebuilt.compiler is compiler
        assert compiler.get_cache_stats()['misses'] == 1

    def test_corrupt_source_raises_compile_error(self):
        """A stored source that doesn't compile fails like construction"""
        from callable_primitive import DeferredCallable, CompileError

        with pytest.raises(CompileError):
            DeferredCallable.deserialize({'source': '|i| i +'})

    @pytest.mark.parametrize('form', [
        ['|i| i'],
        '|i| i',
        None,
        {},
        {'code': '|i| i'},
        {'source': '|i| i', 'executable': 'cached'},
        {'source': 42},
        {'source': None},
    ])
    def test_malformed_form_raises_serial_form_error(self, form):
        """Anything other than {'source': str} is rejected"""
        from callable_primitive import DeferredCallable, SerialFormError

        with pytest.raises(SerialFormError):
            DeferredCallable.deserialize(form)

    def test_serial_form_error_is_value_error(self):
        """SerialFormError can be caught as ValueError"""
        from callable_primitive import SerialFormError

        assert issubclass(SerialFormError, ValueError)


class TestJson:
    """Test the JSON serial form"""

    def test_to_json(self):
        """to_json is a JSON object with one key"""
        from callable_primitive import DeferredCallable

        text = DeferredCallable('|i| i ** 2').to_json()

        assert json.loads(text) == {'source': '|i| i ** 2'}

    def test_from_json(self):
        """from_json rebuilds a working callable"""
        from callable_primitive import DeferredCallable

        rebuilt = DeferredCallable.from_json('{"source": "|i| i % 3 == 0"}')

        assert list(filter(rebuilt, range(1, 11))) == [3, 6, 9]

    def test_unicode_and_newlines_survive(self):
        """Source text round-trips byte for byte"""
        from callable_primitive import DeferredCallable

        source = '|name|\n    greeting = "héllo ✓"\n    f"{greeting}, {name}"'
        rebuilt = DeferredCallable.from_json(DeferredCallable(source).to_json())

        assert rebuilt.source == source
        assert rebuilt('bob') == 'héllo ✓, bob'

    def test_invalid_json(self):
        """Text that isn't JSON raises SerialFormError"""
        from callable_primitive import DeferredCallable, SerialFormError

        with pytest.raises(SerialFormError):
            DeferredCallable.from_json('{source: nope')


class TestPickle:
    """Test pickling through the serial form"""

    def test_pickle_round_trip(self):
        """Pickled callables behave like the originals"""
        from callable_primitive import DeferredCallable

        square = DeferredCallable('|i| i ** 2')
        rebuilt = pickle.loads(pickle.dumps(square))

        assert rebuilt == square
        assert rebuilt(4) == 16

    def test_pickle_stores_serial_form(self):
        """The pickle payload is the serial form, not compiled code"""
        from callable_primitive import DeferredCallable

        square = DeferredCallable('|i| i ** 2')
        rebuild, args = square.__reduce__()

        assert args[1] == {'source': '|i| i ** 2'}
        assert args[2] is None  # default backend is not stored

    def test_pickle_after_set_source(self):
        """Pickling captures the current source"""
        from callable_primitive import DeferredCallable

        deferred = DeferredCallable('|i| i ** 2')
        deferred.set_source('|i| i ** 3')

        assert pickle.loads(pickle.dumps(deferred))(2) == 8

    def test_pickle_keeps_custom_backend(self):
        """A non-default backend is pickled along with the form"""
        from callable_primitive import DeferredCallable

        deferred = DeferredCallable('|i| i + 1', compiler=TaggingCompiler('mine'))
        rebuilt = pickle.loads(pickle.dumps(deferred))

        assert isinstance(rebuilt.compiler, TaggingCompiler)
        assert rebuilt.compiler.tag == 'mine'
        assert rebuilt(1) == 2

    def test_pickle_default_python_compiler_settings(self):
        """PythonCompiler pickles its settings, not its cache"""
        from callable_primitive import DeferredCallable

        compiler = PythonCompiler(cache=False)
        deferred = DeferredCallable('|i| i', compiler=compiler)
        rebuilt = pickle.loads(pickle.dumps(deferred))

        assert rebuilt.compiler.cache_enabled is False
        assert rebuilt.compiler.get_cache_stats()['size'] == 0

    def test_copy_goes_through_serial_form(self):
        """copy.deepcopy rebuilds an independent instance"""
        import copy
        from callable_primitive import DeferredCallable

        original = DeferredCallable('|i| i ** 2')
        clone = copy.deepcopy(original)
        clone.set_source('|i| 0')

        assert original(3) == 9
        assert clone(3) == 0
