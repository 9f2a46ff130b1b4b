"""Tests for descriptor aggregation over a shell and its loaded sub-forms."""

from bcmeta.core.models import FieldType, PageType, SystemAction
from bcmeta.protocol.form_tree import ControlNode
from bcmeta.services.aggregator import (
    MetadataAggregator,
    infer_page_type,
    is_system_field,
    option_values,
    page_id_from_form,
)

from .builders import action, field, form, group


def _payload(customer_card, form_id):
    if form_id == "b3":
        return customer_card["open_response"][0]["parameters"][1]
    return customer_card["load_responses"][form_id][0]["parameters"][1]


class TestHelpers:
    """Tests for the classification helpers."""

    def test_system_fields(self):
        for name in ["SystemId", "systemCreatedAt", "Timestamp", "Last Date Modified", "SystemRowVersion", "Id"]:
            assert is_system_field(name), name
        for name in ["Name", "Identity Card", "Balance (LCY)", "Payment Service GUID", "Integration Guid"]:
            assert not is_system_field(name), name

    def test_page_type_from_caption(self):
        assert infer_page_type("Customer List") is PageType.LIST
        assert infer_page_type("Sales Order Document") is PageType.DOCUMENT
        assert infer_page_type("General Journal") is PageType.WORKSHEET
        assert infer_page_type("Customer Card") is PageType.CARD

    def test_page_id_from_cache_key(self):
        node = ControlNode.from_raw(form("b1", "X", CacheKey="22:embedded(False)"))
        assert page_id_from_form(node, "99") == "22"
        assert page_id_from_form(ControlNode.from_raw(form("b1", "X")), "99") == "99"

    def test_option_values(self):
        assert option_values({"Options": ["A", "B"]}) == ["A", "B"]
        assert option_values({"Items": [{"Caption": "One"}, {"Value": 2}]}) == ["One"]
        assert option_values({}) is None


class TestCustomerCard:
    """Aggregation of the captured Customer Card."""

    def _aggregate(self, customer_card):
        shell = ControlNode.from_raw(_payload(customer_card, "b3"))
        statistics = ControlNode.from_raw(_payload(customer_card, "b5"))
        # the load response flips Profit to visible
        statistics.children[2].properties["Visible"] = True
        return MetadataAggregator().aggregate(customer_card["page_id"], shell, [statistics])

    def test_counts(self, customer_card):
        descriptor = self._aggregate(customer_card)
        expected = customer_card["expected"]

        assert descriptor.page_id == "21"
        assert descriptor.caption == expected["caption"]
        assert descriptor.form_id == expected["form_id"]
        assert len(descriptor.fields) == expected["field_count"]
        assert len(descriptor.actions) == expected["action_count"]
        assert descriptor.sub_form_ids == expected["loaded_sub_forms"]

    def test_hidden_and_system_controls_excluded(self, customer_card):
        names = {f.name for f in self._aggregate(customer_card).fields}

        assert "SystemId" not in names
        assert "Last Date Modified" not in names
        assert "Search Name" not in names
        assert "Picture Name" not in names

    def test_field_details(self, customer_card):
        fields = {(f.form_id, f.name): f for f in self._aggregate(customer_card).fields}

        blocked = fields[("b3", "Blocked")]
        assert blocked.type is FieldType.OPTION
        assert blocked.options == [" ", "Ship", "Invoice", "All"]
        assert fields[("b3", "No.")].required is True
        assert fields[("b3", "Balance (LCY)")].editable is False
        assert fields[("b3", "Prepayment %")].type is FieldType.PERCENTAGE
        assert fields[("b7", "Contact Name")].control_path == "server:c[0]"
        assert fields[("b5", "Profit (LCY)")].control_path == "server:c[2]"

    def test_actions(self, customer_card):
        actions = self._aggregate(customer_card).actions

        assert [a.caption for a in actions] == [
            "New", "Delete", "Edit", "Ledger Entries", "Sales Quote", "Refresh",
        ]
        by_caption = {a.caption: a for a in actions}
        assert by_caption["New"].system_action == SystemAction.NEW
        assert by_caption["Edit"].system_action == SystemAction.EDIT
        assert by_caption["Ledger Entries"].enabled is False
        assert by_caption["Refresh"].form_id == "b5"

    def test_permissions(self, customer_card):
        permissions = self._aggregate(customer_card).permissions

        assert permissions.insert_allowed is True
        assert permissions.delete_allowed is True
        assert permissions.modify_allowed is True
        assert permissions.read_only is False


class TestOrdering:
    """Shell controls first, then each loaded sub-form in load order."""

    def _shell(self):
        return ControlNode.from_raw(form("s1", "Order", children=[
            group(field("sc", "A"), field("sc", "B")),
            group(form("f1", "Lines", children=[field("sc", "C")], DelayedControls=[]), t="stackc"),
            group(form("f2", "Totals", DelayedControls=[]), t="stackc"),
        ]))

    def test_two_loaded_sub_forms(self):
        loaded = [
            ControlNode.from_raw(form("f1", "Lines", children=[field("sc", "C"), field("sc", "D")])),
            ControlNode.from_raw(form("f2", "Totals", children=[field("dc", "E")])),
        ]

        descriptor = MetadataAggregator().aggregate("42", self._shell(), loaded)

        assert [(f.form_id, f.name) for f in descriptor.fields] == [
            ("s1", "A"), ("s1", "B"), ("f1", "C"), ("f1", "D"), ("f2", "E"),
        ]
        assert descriptor.sub_form_ids == ["f1", "f2"]

    def test_no_loaded_sub_forms_is_shell_walk(self):
        descriptor = MetadataAggregator().aggregate("42", self._shell())

        # embedded sub-form controls still count when nothing was loaded
        assert [(f.form_id, f.name) for f in descriptor.fields] == [
            ("s1", "A"), ("s1", "B"), ("f1", "C"),
        ]
        assert descriptor.sub_form_ids == []

    def test_same_control_emitted_once(self):
        shell = ControlNode.from_raw(form("s1", "Card", children=[field("sc", "A")]))
        again = ControlNode.from_raw(form("s1", "Card", children=[field("sc", "A")]))

        descriptor = MetadataAggregator().aggregate("1", shell, [again])

        assert len(descriptor.fields) == 1


class TestFieldTypes:
    """Control type mapping."""

    def test_multi_select_option(self):
        shell = ControlNode.from_raw(form("s1", "Card", children=[
            field("sec", "Days", MultiSelect=True, Items=[{"Caption": "Mon"}, {"Caption": "Tue"}]),
        ]))

        (days,) = MetadataAggregator().aggregate("1", shell).fields

        assert days.type is FieldType.MULTI_OPTION
        assert days.options == ["Mon", "Tue"]

    def test_unknown_types_ignored(self):
        shell = ControlNode.from_raw(form("s1", "Card", children=[
            field("sc", "Name"),
            {"t": "imgc", "Caption": "Picture"},
        ]))

        descriptor = MetadataAggregator().aggregate("1", shell)

        assert [f.name for f in descriptor.fields] == ["Name"]


class TestPermissions:
    """Explicit form flags win over inference."""

    def test_explicit_flags(self):
        shell = ControlNode.from_raw(form(
            "s1", "Card",
            children=[field("sc", "Name")],
            actions=[action("New", SystemAction.NEW)],
            InsertAllowed=False,
            ModifyAllowed=False,
            DeleteAllowed=True,
        ))

        permissions = MetadataAggregator().aggregate("1", shell).permissions

        assert permissions.insert_allowed is False
        assert permissions.modify_allowed is False
        assert permissions.delete_allowed is True
        assert permissions.read_only is False

    def test_read_only_without_grants(self):
        shell = ControlNode.from_raw(form("s1", "Statistics", children=[
            field("dc", "Total", Editable=False),
        ]))

        permissions = MetadataAggregator().aggregate("1", shell).permissions

        assert permissions.read_only is True
        assert not (permissions.insert_allowed or permissions.modify_allowed or permissions.delete_allowed)

    def test_disabled_new_does_not_grant_insert(self):
        shell = ControlNode.from_raw(form(
            "s1", "Card",
            actions=[action("New", SystemAction.NEW, Enabled=False)],
        ))

        assert MetadataAggregator().aggregate("1", shell).permissions.insert_allowed is False

    def test_non_editable_form(self):
        shell = ControlNode.from_raw(form("s1", "Card", children=[field("sc", "Name")], Editable=False))

        assert MetadataAggregator().aggregate("1", shell).permissions.read_only is True
