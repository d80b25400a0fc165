import unittest
import traceback
import logging
import types
import time
import sys
import os


__all__ = ["Mock", "Mocker", "Expectation", "Call", "CallLog", "Tester",
           "Collector", "MockTestCase", "MockerError", "StateError",
           "OptionError", "UnexpectedMethodError", "ReadOnlyError",
           "list_methods", "is_public_method", "call_all", "replay_all",
           "reset_all", "verify_all", "RECORD", "REPLAY", "ANALYZE"]


ERROR_PREFIX = "[recmock] "


log = logging.getLogger("recmock")
log.addHandler(logging.NullHandler())


# --------------------------------------------------------------------
# Exceptions

class MockerError(RuntimeError):
    """Base for errors caused by misusing a mock while setting up a test."""


class StateError(MockerError):
    """Raised when an operation isn't available in the current state."""


class OptionError(MockerError):
    """Raised for unknown mock options or invalid expectation options."""


class UnexpectedMethodError(MockerError):
    """Raised when recording a method the source class doesn't have."""


class ReadOnlyError(MockerError, TypeError):
    """Raised on any attempt to modify a call log or a logged call."""


# --------------------------------------------------------------------
# Assertion sinks.

class Tester(object):
    """Sink for the results of the checks performed by mocks.

    Mocks never raise when an expectation isn't met.  Instead they report
    to a tester, and keep running so that the code under test may reach
    its end.  Any object implementing these two methods may be used, as
    long as neither of them raises.
    """

    def equal(self, actual, expected, message):
        """Report that C{actual} is expected to be equal to C{expected}."""

    def fail(self, message):
        """Report an unconditional failure."""


class Collector(Tester):
    """Tester which accumulates results until L{verify()} is called.

    A collector may be shared by any number of mocks, so that a single
    call to L{verify()} at the end of the test will show everything that
    went wrong::

        tester = Collector()
        subject = Mock(tester)
        subject.add(1, 2).called(1).returns(3)
        subject.__replay__()
        <exercise code>
        subject.__verify__()
        tester.verify()
    """

    def __init__(self):
        self.passed = []
        self.failures = []

    def equal(self, actual, expected, message):
        if actual == expected:
            self.passed.append(message)
        else:
            self.fail(os.linesep.join([message,
                                       "    got: %r" % (actual,),
                                       "    expected: %r" % (expected,)]))

    def fail(self, message):
        log.debug("Failure reported: %s", message)
        self.failures.append(message)

    def verify(self):
        """Raise AssertionError if any failure was reported.

        The exception message includes every failure, in the order they
        were reported.
        """
        if self.failures:
            message = [ERROR_PREFIX + "Unmet expectations:", ""]
            for failure in self.failures:
                lines = failure.splitlines()
                message.append("=> " + lines.pop(0))
                message.extend(" " + line for line in lines)
                message.append("")
            raise AssertionError(os.linesep.join(message))


# --------------------------------------------------------------------
# Method listing for mocks created from a class.

def is_public_method(name, value):
    """Default predicate used by L{list_methods()}.

    Accepts plain functions, static methods and class methods whose name
    doesn't start with an underscore.
    """
    if name.startswith("_"):
        return False
    return isinstance(value, (types.FunctionType, staticmethod, classmethod))


def list_methods(cls, include_inherited=False, predicate=is_public_method):
    """Return C{(name, declaring_class)} pairs for methods of C{cls}.

    @param cls: Class to be inspected.
    @param include_inherited: If true, methods defined in base classes
                              (other than C{object}) are listed as well.
    @param predicate: Callable accepting C{(name, value)} as found in the
                      class dictionary, which must return true for methods
                      that should be listed.
    """
    result = []
    seen = set()
    for klass in cls.__mro__:
        if klass is object:
            continue
        if klass is not cls and not include_inherited:
            break
        for name, value in sorted(vars(klass).items()):
            if name in seen:
                continue
            seen.add(name)
            if predicate(name, value):
                result.append((name, klass))
    return result


# --------------------------------------------------------------------
# Calls and call logs.

def format_call(name, args=(), kwargs=None):
    """Transform a call into a nice string such as add(1, 2, carry=True)."""
    params = [repr(arg) for arg in args]
    for pair in sorted((kwargs or {}).items()):
        params.append("%s=%r" % pair)
    return "%s(%s)" % (name, ", ".join(params))


def capture_trace():
    """Return the current stack, without frames from this module."""
    frame = sys._getframe(1)
    while frame is not None and frame.f_globals.get("__name__") == __name__:
        frame = frame.f_back
    if frame is None:
        return traceback.StackSummary.from_list([])
    return traceback.extract_stack(frame)


class Call(object):
    """A call seen by a mock in replay mode.

    @ivar name: Name of the method called.
    @ivar args: Tuple of positional arguments received.
    @ivar kwargs: Dictionary of keyword arguments received.
    @ivar expectation: L{Expectation} which handled the call, or None when
                       the method was unknown and stubbed.
    @ivar trace: C{traceback.StackSummary} of the caller.
    @ivar time: Time of the call, in seconds since the epoch.
    """

    def __init__(self, name, expectation, args=(), kwargs=None):
        self.__dict__.update(name=name,
                             expectation=expectation,
                             args=tuple(args),
                             kwargs=dict(kwargs or {}),
                             trace=capture_trace(),
                             time=int(time.time()))

    def __setattr__(self, name, value):
        raise ReadOnlyError(ERROR_PREFIX + "Call is readonly")

    def __delattr__(self, name):
        raise ReadOnlyError(ERROR_PREFIX + "Call is readonly")

    def __repr__(self):
        return "<Call %s>" % format_call(self.name, self.args, self.kwargs)


class CallLog(object):
    """Read-only sequence of L{Call} objects, oldest first.

    A log is a snapshot.  Calls made after it was obtained, or a reset of
    the mock, won't change it.
    """

    def __init__(self, calls=()):
        self._calls = tuple(calls)

    def count(self):
        """Return the number of calls in this log."""
        return len(self._calls)

    def first(self):
        if not self._calls:
            raise IndexError(ERROR_PREFIX + "Call log is empty")
        return self._calls[0]

    def last(self):
        if not self._calls:
            raise IndexError(ERROR_PREFIX + "Call log is empty")
        return self._calls[-1]

    def exists(self, index):
        """Return true if there's a call at the given index.

        Negative indexes count from the end, as with C{log[index]}.
        """
        return -len(self._calls) <= index < len(self._calls)

    def to_list(self):
        return list(self._calls)

    def find_by_name(self, name):
        """Return a new log with the calls made to the given method."""
        return self.__class__(call for call in self._calls
                              if call.name == name)

    def __len__(self):
        return len(self._calls)

    def __iter__(self):
        return iter(self._calls)

    def __getitem__(self, index):
        if isinstance(index, slice):
            return self.__class__(self._calls[index])
        return self._calls[index]

    def __setitem__(self, index, value):
        raise ReadOnlyError(ERROR_PREFIX + "Call log is readonly")

    def __delitem__(self, index):
        raise ReadOnlyError(ERROR_PREFIX + "Call log is readonly")

    def __repr__(self):
        return "<CallLog %r>" % (list(self._calls),)


# --------------------------------------------------------------------
# Expectations.

class Expectation(object):
    """Recorded expectation for calls to a single method.

    Expectations are returned when a method is called on a mock in record
    mode, and may be configured by chaining calls::

        mock.add(1, 2).called(2).returns(3)

    By default an expectation holds a single set of arguments and a single
    return value, and checking arguments is optional (see the
    C{check_arguments_*} options).  With the C{match_arguments} option
    enabled, L{arguments()} and L{returns()} may be called several times,
    and the value returned on replay is the one recorded at the same
    position as the matching arguments.
    """

    options_defaults = {
        "check_arguments_count": False,
        "check_arguments_types": False,
        "check_arguments_values": False,
        "match_arguments": False,
    }

    def __init__(self, args=(), kwargs=None, options=None, get_state=None):
        self.args = tuple(args)
        self.kwargs = dict(kwargs or {})
        self.result = None
        self.variants = []
        self.results = []
        self.expected_calls = None
        self.options = dict(self.options_defaults)
        for option, value in (options or {}).items():
            if option in self.options:
                self.options[option] = value
        self._get_state = get_state

    def _check_record(self, method):
        if self._get_state is not None and self._get_state() is not RECORD:
            raise StateError(ERROR_PREFIX + "%s() is only available in "
                             "record mode" % method)

    def arguments(self, *args, **kwargs):
        """Set the expected arguments.

        May be called multiple times if C{match_arguments} is enabled.
        """
        self._check_record("arguments")
        if self.options["match_arguments"]:
            self.variants.append((args, kwargs))
        else:
            self.args = args
            self.kwargs = kwargs
        return self

    def returns(self, value):
        """Set the value returned by the method on replay.

        May be called multiple times if C{match_arguments} is enabled.
        """
        self._check_record("returns")
        if self.options["match_arguments"]:
            self.results.append(value)
        else:
            self.result = value
        return self

    def called(self, count):
        """Expect the method to be called exactly C{count} times."""
        self._check_record("called")
        self.expected_calls = count
        return self

    def set_option(self, option, value):
        self._check_record("set_option")
        if option not in self.options:
            raise OptionError(ERROR_PREFIX + 'Invalid option: "%s"' % option)
        if option == "match_arguments" and value and \
           not self.options[option]:
            self.variants = []
            self.results = []
        self.options[option] = value
        return self

    def get_option(self, option):
        if option not in self.options:
            raise OptionError(ERROR_PREFIX + 'Invalid option: "%s"' % option)
        return self.options[option]

    def play(self, args, kwargs, tester):
        """Return the recorded value for a call, and run enabled checks.

        Checks report to C{tester} and never prevent the value from being
        returned.
        """
        kwargs = kwargs or {}
        if self.options["match_arguments"]:
            shape = (tuple(args), dict(kwargs))
            for index, variant in enumerate(self.variants):
                if variant == shape:
                    if index < len(self.results):
                        return self.results[index]
                    break
            tester.fail("no return value for arguments: %s"
                        % format_call("", args, kwargs))
            return None

        if self.options["check_arguments_count"]:
            tester.equal(len(args) + len(kwargs),
                         len(self.args) + len(self.kwargs),
                         "must have the same number of arguments")

        if self.options["check_arguments_types"]:
            for label, argument, expected in self._pairs(args, kwargs):
                if type(argument).__module__ == "builtins":
                    message = "argument %s: types must match" % label
                else:
                    message = "argument %s: classes must match" % label
                tester.equal(type(argument), type(expected), message)

        if self.options["check_arguments_values"]:
            for label, argument, expected in self._pairs(args, kwargs):
                tester.equal(argument, expected,
                             "argument %s: values must match" % label)

        return self.result

    def _pairs(self, args, kwargs):
        # Positions missing on either side were already reported by the
        # count check, if enabled.
        for index, (argument, expected) in enumerate(zip(args, self.args)):
            yield "%d" % index, argument, expected
        for key in sorted(kwargs):
            if key in self.kwargs:
                yield "%r" % (key,), kwargs[key], self.kwargs[key]

    def __repr__(self):
        if self.options["match_arguments"]:
            return "<Expectation %d variant(s)>" % len(self.variants)
        return "<Expectation %s>" % format_call("", self.args, self.kwargs)


# --------------------------------------------------------------------
# Mocker.

class State(object):

    def __init__(self, name):
        self._name = name

    def __repr__(self):
        return self._name


RECORD = State("RECORD")
REPLAY = State("REPLAY")
ANALYZE = State("ANALYZE")


class Mocker(object):
    """Controller behind a L{Mock} object.

    The mocker starts in record mode, where every call made through the
    mock creates an L{Expectation} for the called method.  Once the test
    has described the collaborator, the mocker is put in replay mode,
    and calls are logged and answered with the recorded values.  Finally,
    L{verify()} checks the number of calls made against the expectations.

    Problems found while replaying or verifying are reported to the
    tester given to the constructor, and never raised.  Errors in the
    usage of the mocker itself (wrong state, unknown option, and so on)
    raise L{MockerError} subclasses immediately.

    Supported options, all disabled by default:

      - C{check_arguments_count}: calls must have the same number of
        arguments as recorded.
      - C{check_arguments_types}: each argument must have the type of
        the recorded one.
      - C{check_arguments_values}: each argument must be equal to the
        recorded one.
      - C{stub_all}: calls to unknown methods return None and are logged.
      - C{from_class}: class whose methods are added on construction.
      - C{extra_methods}: allow recording methods the C{from_class} class
        doesn't have.
      - C{inherited_methods}: also add methods C{from_class} inherits.
      - C{extra_calls}: don't fail L{verify()} when methods without a
        call count were called.
    """

    options_defaults = {
        "check_arguments_count": False,
        "check_arguments_types": False,
        "check_arguments_values": False,
        "stub_all": False,
        "from_class": False,
        "extra_methods": False,
        "inherited_methods": False,
        "extra_calls": False,
    }

    def __init__(self, tester, options=None, method_lister=None):
        """
        @param tester: Object reporting assertions, see L{Tester}.
        @param options: Dictionary with options, see the class docstring.
        @param method_lister: Callable with the signature of
                              L{list_methods()}, used to find methods
                              when C{from_class} is given.
        """
        self._tester = tester
        self._state = RECORD
        self._expectations = {}
        self._calls = []
        self._method_lister = method_lister or list_methods
        self._options = dict(self.options_defaults)
        for option, value in (options or {}).items():
            if option not in self._options:
                raise OptionError(ERROR_PREFIX + 'Unknown option: "%s"'
                                  % option)
            self._options[option] = value
        if self._options["from_class"]:
            self.from_class(self._options["from_class"])

    def get_state(self):
        """Return the current state (RECORD, REPLAY or ANALYZE)."""
        return self._state

    def get_option(self, option):
        if option not in self._options:
            raise OptionError(ERROR_PREFIX + 'Unknown option: "%s"' % option)
        return self._options[option]

    def _set_state(self, state):
        if state is not self._state:
            log.debug("Mocker state changed from %r to %r", self._state, state)
            self._state = state

    def replay(self):
        """Put the mocker in replay mode, ready to be used."""
        self._set_state(REPLAY)

    def analyze(self):
        """Put the mocker in analyze mode.

        In this mode calling a method returns the L{CallLog} with the
        calls made to it during replay.
        """
        self._set_state(ANALYZE)

    def from_class(self, cls):
        """Add an empty expectation for each method of the given class.

        Expectations still need to be configured as usual.
        """
        if self._state is not RECORD:
            raise StateError(ERROR_PREFIX + "from_class() is only available "
                             "in record mode")
        include_inherited = self._options["inherited_methods"]
        for name, declaring_class in self._method_lister(cls,
                                                         include_inherited):
            if include_inherited or declaring_class is cls:
                self._add_method(name, (), {})

    def _add_method(self, name, args, kwargs):
        if self._state is not RECORD:
            raise StateError(ERROR_PREFIX + "add_method() is only available "
                             "in record mode")
        if log.isEnabledFor(logging.DEBUG):
            log.debug("Recording %s", format_call(name, args, kwargs))
        expectation = Expectation(args, kwargs, self._options,
                                  self.get_state)
        self._expectations[name] = expectation
        return expectation

    def add_method(self, name, args=(), kwargs=None):
        """Add an expectation for the given method, and return it.

        An existing expectation for the same method is replaced.
        """
        if self._state is not RECORD:
            raise StateError(ERROR_PREFIX + "add_method() is only available "
                             "in record mode")
        if (not self._options["from_class"] or
            self._options["extra_methods"] or self.has_method(name)):
            return self._add_method(name, args, kwargs)
        raise UnexpectedMethodError(ERROR_PREFIX + "Extra methods can not be "
                                    "added when extra_methods = false: %s()"
                                    % name)

    def play_method(self, name, args=(), kwargs=None):
        """Log a call to the given method, and return its recorded value."""
        if log.isEnabledFor(logging.DEBUG):
            log.debug("Replaying %s", format_call(name, args, kwargs))
        expectation = self._expectations.get(name)
        if expectation is not None:
            self._calls.append(Call(name, expectation, args, kwargs))
            return expectation.play(args, kwargs, self._tester)
        elif self._options["stub_all"]:
            self._calls.append(Call(name, None, args, kwargs))
            return None
        else:
            self._tester.fail("call to unknown method: %s()" % name)
            return None

    def call(self, name, args=(), kwargs=None):
        """This is called by mock objects whenever a method is called on them.

        What happens depends on the state: in record mode an expectation
        is added and returned, in replay mode the call is played, and in
        analyze mode the calls made to the method are returned.
        """
        if self._state is RECORD:
            return self.add_method(name, args, kwargs)
        elif self._state is REPLAY:
            return self.play_method(name, args, kwargs)
        elif self._state is ANALYZE:
            return self.get_calls_for(name)
        else:
            raise StateError(ERROR_PREFIX + "Unknown state %r" % self._state)

    def has_method(self, name):
        return name in self._expectations

    def get_expectation(self, name):
        """Return the expectation for the given method, or None."""
        return self._expectations.get(name)

    def reset_calls(self):
        """Forget all calls made so far.  Expectations are kept."""
        del self._calls[:]

    def get_calls(self):
        return CallLog(self._calls)

    def get_calls_for(self, name):
        return self.get_calls().find_by_name(name)

    def verify(self):
        """Check the number of calls made against the expectations.

        Methods with an expected number of calls are checked one by one.
        Unless the C{extra_calls} option is enabled, every logged call must
        also belong to one of these methods.
        """
        if self._state is RECORD:
            raise StateError(ERROR_PREFIX + "cannot call verify() with mock "
                             "object in record mode")
        expected = 0
        for name, expectation in self._expectations.items():
            if expectation.expected_calls is not None:
                count = self.get_calls_for(name).count()
                self._tester.equal(count, expectation.expected_calls,
                                   "%s() expects %d calls"
                                   % (name, expectation.expected_calls))
                expected += count
        total = len(self._calls)
        log.debug("Verified %d of %d call(s)", expected, total)
        if not self._options["extra_calls"] and expected != total:
            self._tester.fail("unexpected methods were called")


# --------------------------------------------------------------------
# Mock object.

class Mock(object):
    """Object standing in for a real collaborator.

    Methods not defined here are forwarded to the L{Mocker} in
    C{__mocker__}.  The mock itself is controlled with a few special
    methods, named so that they can't clash with mocked ones::

        subject = Mock(tester, from_class=Calculator)
        subject.add(1, 2).called(2).returns(3)
        subject.subtract(5, 4).called(1).returns(1)
        subject.__replay__()

        Accountant(subject).balance()

        subject.__verify__()
        subject.__analyze__()
        subject.add().first().args
    """

    def __init__(self, tester, method_lister=None, **options):
        self.__mocker__ = Mocker(tester, options, method_lister)

    def __getattr__(self, name):
        if name.startswith("__") and name.endswith("__"):
            raise AttributeError(name)
        mocker = self.__mocker__
        def method(*args, **kwargs):
            return mocker.call(name, args, kwargs)
        method.__name__ = name
        return method

    def __replay__(self):
        self.__mocker__.replay()

    def __analyze__(self):
        self.__mocker__.analyze()

    def __calls__(self):
        return self.__mocker__.get_calls()

    def __reset__(self):
        self.__mocker__.reset_calls()

    def __verify__(self):
        self.__mocker__.verify()

    def __repr__(self):
        return "<Mock in %r mode>" % self.__mocker__.get_state()


def call_all(method, args, mocks):
    """Call the given method with args on all the mocks given."""
    for mock in mocks:
        getattr(mock, method)(*args)


def replay_all(*mocks):
    call_all("__replay__", (), mocks)


def reset_all(*mocks):
    call_all("__reset__", (), mocks)


def verify_all(*mocks):
    call_all("__verify__", (), mocks)


# --------------------------------------------------------------------
# Integration with unittest.

class MockTestCase(unittest.TestCase):
    """unittest.TestCase subclass with a tester for mocks.

    Each test run gets a fresh L{Collector} in C{self.tester}.  It is
    created right before C{setUp()} runs, and failures reported to it are
    raised once the test is over, so they show up as regular test
    failures::

        class AccountantTest(MockTestCase):

            def test_balance(self):
                calculator = self.mock()
                calculator.add(1, 2).called(1).returns(3)
                calculator.__replay__()
                self.assertEqual(Accountant(calculator).balance(), 3)
                calculator.__verify__()
    """

    def __init__(self, methodName="runTest"):
        super(MockTestCase, self).__init__(methodName)
        set_up = self.setUp
        def set_up_wrapper():
            self.tester = Collector()
            self.addCleanup(self.tester.verify)
            set_up()
        self.setUp = set_up_wrapper

    def mock(self, method_lister=None, **options):
        """Return a new mock reporting to C{self.tester}."""
        return Mock(self.tester, method_lister, **options)
