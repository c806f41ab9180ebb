import uuid

import pytest

from xrmsim import (
    AliasedValue,
    ColumnSet,
    Condition,
    EntityReference,
    FilterNode,
    InvalidArgument,
    JoinType,
    LinkEntity,
    LogicalOperator,
    MetadataProvider,
    QueryDefinition,
    Record,
    Relationship,
    UnknownAttribute,
    UnknownEntity,
)
from xrmsim.criteria import join_key, plan_query
from xrmsim.model import AttributeType
from xrmsim.operators import ConditionOperator as Op

A1, A2, A3 = (uuid.uuid4() for _ in range(3))
OWNER = uuid.uuid4()


@pytest.fixture()
def engine(make_engine):
    owner = EntityReference("systemuser", OWNER)
    records = [
        Record("systemuser", OWNER, {"fullname": "Ana Admin"}),
        Record("account", A1, {"name": "Contoso", "ownerid": owner}),
        Record("account", A2, {"name": "Fabrikam", "ownerid": owner}),
        Record("account", A3, {"name": "Northwind"}),
        Record("contact", attributes={"lastname": "Smith", "parentcustomerid": EntityReference("account", A1)}),
        Record("contact", attributes={"lastname": "Jones", "parentcustomerid": EntityReference("account", A1)}),
        Record("contact", attributes={"lastname": "Brown", "parentcustomerid": EntityReference("account", A2)}),
        Record("contact", attributes={"lastname": "Orphan"}),
    ]
    return make_engine(records)


def contacts_link(join=JoinType.INNER, alias="c", criteria=None, columns=None):
    return LinkEntity(
        link_from_entity="account",
        link_from_attribute="accountid",
        link_to_entity="contact",
        link_to_attribute="parentcustomerid",
        join=join,
        alias=alias,
        columns=columns or ColumnSet.of("lastname"),
        criteria=criteria or FilterNode(),
    )


def names(rows):
    return [r["name"] for r in rows]


def test_empty_filter_returns_everything_in_store_order(engine):
    rows = engine.evaluate(QueryDefinition("account", ColumnSet.of("name")))
    assert names(rows) == ["Contoso", "Fabrikam", "Northwind"]


def test_or_filter_and_nested_and(engine):
    criteria = FilterNode(
        LogicalOperator.OR,
        conditions=[Condition("name", Op.EQUAL, ("northwind",))],
        filters=[
            FilterNode(
                conditions=[
                    Condition("name", Op.BEGINS_WITH, ("c",)),
                    Condition("ownerid", Op.NOT_NULL),
                ]
            )
        ],
    )
    rows = engine.evaluate(QueryDefinition("account", ColumnSet.of("name"), criteria))
    assert names(rows) == ["Contoso", "Northwind"]


def test_inner_join_fans_out(engine):
    q = QueryDefinition("account", ColumnSet.of("name"), links=[contacts_link()])
    rows = engine.evaluate(q)
    assert names(rows) == ["Contoso", "Contoso", "Fabrikam"]
    assert [r["c.lastname"].value for r in rows] == ["Smith", "Jones", "Brown"]
    assert rows[0]["c.lastname"] == AliasedValue("contact", "lastname", "Smith")


def test_outer_join_keeps_unmatched_parent_once(engine):
    q = QueryDefinition("account", ColumnSet.of("name"), links=[contacts_link(JoinType.LEFT_OUTER)])
    rows = engine.evaluate(q)
    assert names(rows) == ["Contoso", "Contoso", "Fabrikam", "Northwind"]
    assert "c.lastname" not in rows[-1]


def test_outer_join_filters_joined_side_first(engine):
    smith = FilterNode(conditions=[Condition("lastname", Op.EQUAL, ("Smith",))])
    q = QueryDefinition("account", ColumnSet.of("name"), links=[contacts_link(JoinType.LEFT_OUTER, criteria=smith)])
    rows = engine.evaluate(q)
    assert names(rows) == ["Contoso", "Fabrikam", "Northwind"]
    assert rows[0]["c.lastname"].value == "Smith"
    assert "c.lastname" not in rows[1]


def test_inner_join_criteria_drop_parents(engine):
    smith = FilterNode(conditions=[Condition("lastname", Op.EQUAL, ("Smith",))])
    q = QueryDefinition("account", ColumnSet.of("name"), links=[contacts_link(criteria=smith)])
    assert names(engine.evaluate(q)) == ["Contoso"]


def test_root_condition_on_linked_alias(engine):
    criteria = FilterNode(conditions=[Condition("lastname", Op.EQUAL, ("Brown",), entity_name="c")])
    q = QueryDefinition("account", ColumnSet.of("name"), criteria, links=[contacts_link()])
    assert names(engine.evaluate(q)) == ["Fabrikam"]

    dotted = FilterNode(conditions=[Condition("c.lastname", Op.EQUAL, ("Jones",))])
    q = QueryDefinition("account", ColumnSet.of("name"), dotted, links=[contacts_link()])
    assert names(engine.evaluate(q)) == ["Contoso"]


def test_unaliased_link_gets_default_alias_and_answers_to_entity_name(engine):
    criteria = FilterNode(conditions=[Condition("lastname", Op.EQUAL, ("Smith",), entity_name="contact")])
    q = QueryDefinition(
        "account", ColumnSet.of("name"), criteria, links=[contacts_link(alias=None, columns=ColumnSet.every())]
    )
    [row] = engine.evaluate(q)
    assert row["contact1.lastname"].value == "Smith"


def test_entity_name_is_ambiguous_with_two_unaliased_links(engine):
    criteria = FilterNode(conditions=[Condition("lastname", Op.EQUAL, ("Smith",), entity_name="contact")])
    q = QueryDefinition(
        "account", ColumnSet.of("name"), criteria, links=[contacts_link(alias=None), contacts_link(alias=None)]
    )
    plan = plan_query(q, engine.metadata)
    assert [p.alias for p in plan.walk()] == ["contact1", "contact2"]
    with pytest.raises(InvalidArgument, match="LinkEntity with name or alias contact is not found"):
        engine.evaluate(q)


def test_nested_link_reads_parent_alias(engine):
    owner_link = LinkEntity(
        link_from_entity="account",
        link_from_attribute="ownerid",
        link_to_entity="systemuser",
        link_to_attribute="systemuserid",
        alias="owner",
        columns=ColumnSet.of("fullname"),
    )
    account_link = LinkEntity(
        link_from_entity="contact",
        link_from_attribute="parentcustomerid",
        link_to_entity="account",
        link_to_attribute="accountid",
        alias="acc",
        columns=ColumnSet.of("name"),
        links=[owner_link],
    )
    rows = engine.evaluate(QueryDefinition("contact", ColumnSet.of("lastname"), links=[account_link]))
    assert [r["lastname"] for r in rows] == ["Smith", "Jones", "Brown"]
    assert {r["owner.fullname"].value for r in rows} == {"Ana Admin"}


@pytest.mark.parametrize("alias", ["1bad", "has space", "dash-ed"])
def test_invalid_alias(engine, alias):
    q = QueryDefinition("account", links=[contacts_link(alias=alias)])
    with pytest.raises(InvalidArgument):
        engine.evaluate(q)


def test_duplicate_alias(engine):
    q = QueryDefinition("account", links=[contacts_link(alias="c"), contacts_link(alias="c")])
    with pytest.raises(InvalidArgument):
        engine.evaluate(q)


def test_unknown_join_target(engine):
    bad_attr = LinkEntity("account", "accountid", "contact", "nosuchfield", alias="c")
    with pytest.raises(UnknownAttribute):
        engine.evaluate(QueryDefinition("account", links=[bad_attr]))
    bad_entity = LinkEntity("account", "accountid", "nosuchentity", "id", alias="x")
    with pytest.raises(UnknownEntity):
        engine.evaluate(QueryDefinition("account", links=[bad_entity]))


def test_join_key_normalization():
    rid = uuid.uuid4()
    assert join_key(EntityReference("account", rid)) == rid
    assert join_key(str(rid).upper()) == rid
    assert join_key("ABC") == "abc"
    assert join_key(AliasedValue("account", "accountid", rid)) == rid


@pytest.fixture()
def declared_engine(make_engine):
    metadata = MetadataProvider()
    metadata.register_entity("account", {"name": AttributeType.STRING})
    metadata.register_entity(
        "contact", {"lastname": AttributeType.STRING, "parentcustomerid": AttributeType.CUSTOMER}
    )
    records = [
        Record("account", A1, {"name": "Contoso"}),
        Record("contact", attributes={"lastname": "Smith", "parentcustomerid": EntityReference("account", A1)}),
    ]
    return make_engine(records, metadata=metadata)


def test_misspelled_attribute_on_declared_entity(declared_engine):
    criteria = FilterNode(conditions=[Condition("nmae", Op.EQUAL, ("Contoso",))])
    with pytest.raises(UnknownAttribute):
        declared_engine.evaluate(QueryDefinition("account", ColumnSet.of("name"), criteria))


def test_misspelled_attribute_in_link_criteria(declared_engine):
    criteria = FilterNode(conditions=[Condition("lastnme", Op.EQUAL, ("Smith",))])
    q = QueryDefinition("account", ColumnSet.of("name"), links=[contacts_link(criteria=criteria)])
    with pytest.raises(UnknownAttribute):
        declared_engine.evaluate(q)


def test_learned_entity_tolerates_attributes_never_seen(engine):
    criteria = FilterNode(conditions=[Condition("websiteurl", Op.NULL)])
    rows = engine.evaluate(QueryDefinition("account", ColumnSet.of("name"), criteria))
    assert names(rows) == ["Contoso", "Fabrikam", "Northwind"]


def test_join_from_registered_relationship(engine):
    engine.metadata.register_relationship(
        Relationship("contact_customer_accounts", "account", "accountid", "contact", "parentcustomerid")
    )
    down = engine.metadata.relationship_link(
        "contact_customer_accounts", "account", alias="c", columns=ColumnSet.of("lastname")
    )
    assert (down.link_from_attribute, down.link_to_entity, down.link_to_attribute) == (
        "accountid",
        "contact",
        "parentcustomerid",
    )
    rows = engine.evaluate(QueryDefinition("account", ColumnSet.of("name"), links=[down]))
    assert names(rows) == ["Contoso", "Contoso", "Fabrikam"]

    up = engine.metadata.relationship_link("contact_customer_accounts", "Contact", alias="a")
    assert (up.link_from_attribute, up.link_to_entity, up.link_to_attribute) == (
        "parentcustomerid",
        "account",
        "accountid",
    )
    with pytest.raises(InvalidArgument):
        engine.metadata.relationship_link("contact_customer_accounts", "systemuser")
    with pytest.raises(InvalidArgument):
        engine.metadata.get_relationship("nope")
