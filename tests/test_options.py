"""Tests for read option composition and its mutual exclusions."""

import pytest

from kvorchestra import ExplainOptions, InvalidArgumentError, QuerySpec, RunOptions, RunQueryOptions, TransactionOptions
from kvorchestra.runtime.context import RequestContext
from kvorchestra.runtime.options import (
    CONSISTENCY_IN_TRANSACTION_ERROR,
    READ_TIME_AND_CONSISTENCY_ERROR,
    READ_TIME_IN_TRANSACTION_ERROR,
    OptionComposer,
    get_transaction_request,
)
from kvorchestra.runtime.state import RequestRole


@pytest.fixture
def composer():
    return OptionComposer()


def test_no_options_produce_empty_envelope(composer):
    shared = composer.compose(RequestContext(), RunQueryOptions())

    assert shared.to_wire() == {}


@pytest.mark.parametrize("consistency, code", [("strong", 1), ("eventual", 2), ("EVENTUAL", 2)])
def test_consistency_maps_to_wire_code(composer, consistency, code):
    shared = composer.compose(RequestContext(), RunQueryOptions(consistency=consistency))

    assert shared.to_wire() == {"readOptions": {"readConsistency": code}}


def test_read_time_is_floored_to_whole_seconds(composer):
    shared = composer.compose(RequestContext(), RunQueryOptions(read_time=1700000000999))

    assert shared.read_options.read_time.seconds == 1700000000
    assert shared.read_options.read_time.nanos == 0
    assert shared.to_wire() == {"readOptions": {"readTime": "2023-11-14T22:13:20Z"}}


def test_read_time_and_consistency_conflict(composer):
    options = RunQueryOptions(consistency="strong", read_time=1700000000000)

    with pytest.raises(InvalidArgumentError, match=READ_TIME_AND_CONSISTENCY_ERROR):
        composer.compose(RequestContext(), options)


def test_unstarted_transaction_begins_with_the_read(composer):
    context = RequestContext(role=RequestRole.TRANSACTION)

    shared = composer.compose(context, RunQueryOptions())

    assert shared.read_options.consistency_type == "newTransaction"
    assert shared.to_wire() == {"readOptions": {"newTransaction": {}}}


def test_read_only_transaction_begins_read_only(composer):
    context = RequestContext(role=RequestRole.TRANSACTION, read_only=True)

    shared = composer.compose(context, RunQueryOptions())

    assert shared.to_wire() == {"readOptions": {"newTransaction": {"readOnly": {}}}}


def test_consistency_rejected_when_beginning_transaction(composer):
    context = RequestContext(role=RequestRole.TRANSACTION)

    with pytest.raises(InvalidArgumentError, match=CONSISTENCY_IN_TRANSACTION_ERROR):
        composer.compose(context, RunQueryOptions(consistency="strong"))


def test_read_time_rejected_in_active_transaction(composer):
    context = RequestContext(role=RequestRole.TRANSACTION)
    context.begin("tx-1")

    with pytest.raises(InvalidArgumentError, match=READ_TIME_IN_TRANSACTION_ERROR):
        composer.compose(context, RunQueryOptions(read_time=1700000000000))


def test_active_transaction_adds_no_read_options(composer):
    context = RequestContext(role=RequestRole.TRANSACTION)
    context.begin("tx-1")

    shared = composer.compose(context, RunQueryOptions())

    # The handle itself is set when the request is prepared.
    assert shared.read_options is None


def test_query_options_carry_explain_and_namespace(composer):
    query = QuerySpec(kinds=["Task"], namespace="ns-test")
    options = RunQueryOptions(explain_options=ExplainOptions(analyze=True))

    shared = composer.compose(RequestContext(), options, query)

    assert shared.to_wire() == {
        "partitionId": {"namespaceId": "ns-test"},
        "explainOptions": {"analyze": True},
    }


def test_envelopes_are_never_shared(composer):
    options = RunQueryOptions(explain_options=ExplainOptions())
    first = composer.compose(RequestContext(), options, QuerySpec())
    second = composer.compose(RequestContext(), options, QuerySpec())

    assert first is not second
    assert first.explain_options is not options.explain_options


def test_transaction_request_prefers_explicit_options():
    context = RequestContext(role=RequestRole.TRANSACTION, read_only=True)
    options = RunOptions(transaction_options=TransactionOptions(id="tx-old"))

    assert get_transaction_request(context, options) == {"readWrite": {"previousTransaction": "tx-old"}}


def test_transaction_request_retries_previous_transaction():
    context = RequestContext(role=RequestRole.TRANSACTION)

    assert get_transaction_request(context, RunOptions(transaction_id="tx-old")) == {
        "readWrite": {"previousTransaction": "tx-old"}
    }
    assert get_transaction_request(context, RunOptions(read_only=True)) == {"readOnly": {}}
    assert get_transaction_request(context) == {}
