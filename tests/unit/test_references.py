from __future__ import annotations

from aws_provisioner.resources.references import (
    UNKNOWN,
    AttributeRef,
    is_unknown,
    iter_refs,
    resolve_refs,
)


def test_iter_refs_walks_nested_values() -> None:
    value = {
        "vpc_id": "${aws_vpc.main.id}",
        "groups": ["${aws_security_group.web.id}", "sg-literal"],
        "tags": {"Name": "subnet in ${aws_vpc.main.cidr_block}"},
    }

    assert list(iter_refs(value)) == [
        AttributeRef("aws_vpc", "main", "id"),
        AttributeRef("aws_security_group", "web", "id"),
        AttributeRef("aws_vpc", "main", "cidr_block"),
    ]


def test_ref_address_and_str() -> None:
    ref = AttributeRef("aws_subnet", "a", "id")
    assert ref.address == "aws_subnet.a"
    assert str(ref) == "${aws_subnet.a.id}"


def test_plain_strings_have_no_refs() -> None:
    assert list(iter_refs("vpc-0abc")) == []
    assert list(iter_refs("${not a ref}")) == []


def test_whole_value_reference_keeps_type() -> None:
    resolved = resolve_refs({"port": "${aws_instance.web.port}"}, lambda ref: 8080)
    assert resolved == {"port": 8080}


def test_embedded_reference_is_interpolated() -> None:
    resolved = resolve_refs("${aws_vpc.main.id}-public", lambda ref: "vpc-1")
    assert resolved == "vpc-1-public"


def test_embedded_unknown_makes_whole_string_unknown() -> None:
    assert resolve_refs("${aws_vpc.main.id}-public", lambda ref: UNKNOWN) == UNKNOWN


def test_resolve_refs_leaves_input_untouched() -> None:
    value = {"ids": ["${aws_subnet.a.id}"]}
    resolved = resolve_refs(value, lambda ref: "subnet-1")
    assert resolved == {"ids": ["subnet-1"]}
    assert value == {"ids": ["${aws_subnet.a.id}"]}


def test_is_unknown_nested() -> None:
    assert is_unknown(UNKNOWN)
    assert is_unknown(["sg-1", UNKNOWN])
    assert is_unknown({"a": {"b": UNKNOWN}})
    assert not is_unknown({"a": ["sg-1"]})
