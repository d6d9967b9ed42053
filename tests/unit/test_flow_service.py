import pytest

from exceptions.flow_exception import FlowNotFoundException, FlowServiceException, FlowValidationException
from models.request.flow_request import CreateFlowRequest, UpdateFlowRequest, CreateFlowFromTemplateRequest

from flow_builders import TENANT_ID, name_flow_nodes, age_flow_nodes


async def _create(flow_service, nodes, name="Flow", tenant_id=TENANT_ID):
    return await flow_service.create_flow(
        tenant_id=tenant_id,
        flow_request=CreateFlowRequest.model_validate({"name": name, "nodes": nodes})
    )


class TestFlowCrud:

    async def test_create_flow_is_inactive_with_entry_node(self, flow_service):
        """New flows start inactive and point at their start node"""
        flow = await _create(flow_service, name_flow_nodes())
        assert flow.id is not None
        assert flow.tenant_id == TENANT_ID
        assert flow.is_active is False
        assert flow.entry_node_id == "start"

    async def test_flows_are_scoped_by_tenant(self, flow_service):
        flow = await _create(flow_service, name_flow_nodes())
        await _create(flow_service, name_flow_nodes(), tenant_id="tenant-2")

        flows = await flow_service.get_flows_list(TENANT_ID)
        assert [item.id for item in flows] == [flow.id]
        with pytest.raises(FlowNotFoundException):
            await flow_service.get_flow_detail("tenant-2", flow.id)

    async def test_partial_update_keeps_other_fields(self, flow_service):
        flow = await _create(flow_service, name_flow_nodes(), name="Original")

        updated = await flow_service.update_flow(
            TENANT_ID, flow.id, UpdateFlowRequest.model_validate({"description": "new text"})
        )

        assert updated.description == "new text"
        assert updated.name == "Original"
        assert len(updated.nodes) == 4

    async def test_update_nodes_rederives_entry_node(self, flow_service):
        flow = await _create(flow_service, name_flow_nodes())

        updated = await flow_service.update_flow(
            TENANT_ID, flow.id, UpdateFlowRequest.model_validate({"nodes": [{"id": "begin", "type": "start"}]})
        )

        assert updated.entry_node_id == "begin"

    async def test_delete_flow(self, flow_service):
        flow = await _create(flow_service, name_flow_nodes())
        assert await flow_service.delete_flow(TENANT_ID, flow.id) is True
        with pytest.raises(FlowNotFoundException):
            await flow_service.delete_flow(TENANT_ID, flow.id)


class TestNodeOperations:

    async def test_add_node(self, flow_service):
        flow = await _create(flow_service, name_flow_nodes())
        updated = await flow_service.add_node(
            TENANT_ID, flow.id, {"id": "extra", "type": "message", "configuration": {"messageText": "extra"}}
        )
        assert updated.get_node("extra").type == "message"

    async def test_add_duplicate_node(self, flow_service):
        flow = await _create(flow_service, name_flow_nodes())
        with pytest.raises(FlowServiceException) as exc_info:
            await flow_service.add_node(TENANT_ID, flow.id, {"id": "greet", "type": "message"})
        assert exc_info.value.code == "DUPLICATE_NODE_ID"
        assert exc_info.value.status_code == 409

    async def test_add_node_of_unknown_type(self, flow_service):
        flow = await _create(flow_service, name_flow_nodes())
        with pytest.raises(FlowServiceException) as exc_info:
            await flow_service.add_node(TENANT_ID, flow.id, {"id": "x", "type": "teleport"})
        assert exc_info.value.status_code == 400

    async def test_update_node_merges_fields(self, flow_service):
        flow = await _create(flow_service, name_flow_nodes())
        updated = await flow_service.update_node(
            TENANT_ID, flow.id, "greet", {"configuration": {"messageText": "Hello {{name}}"}}
        )
        node = updated.get_node("greet")
        assert node.configuration.messageText == "Hello {{name}}"
        assert node.connections[0].targetNodeId == "end"

    async def test_update_missing_node(self, flow_service):
        flow = await _create(flow_service, name_flow_nodes())
        with pytest.raises(FlowServiceException) as exc_info:
            await flow_service.update_node(TENANT_ID, flow.id, "ghost", {"name": "x"})
        assert exc_info.value.code == "NODE_NOT_FOUND"

    async def test_delete_node_strips_connections(self, flow_service):
        """Deleting a node removes every connection that targeted it"""
        flow = await _create(flow_service, name_flow_nodes())

        updated = await flow_service.delete_node(TENANT_ID, flow.id, "greet")

        assert updated.get_node("greet") is None
        assert updated.get_node("ask_name").connections == []


class TestActivation:

    async def test_activation_deactivates_other_flows(self, flow_service):
        """Only one flow per tenant is active"""
        first = await _create(flow_service, name_flow_nodes(), name="first")
        second = await _create(flow_service, age_flow_nodes(), name="second")
        other_tenant = await _create(flow_service, name_flow_nodes(), tenant_id="tenant-2")
        await flow_service.activate_flow("tenant-2", other_tenant.id)

        await flow_service.activate_flow(TENANT_ID, first.id)
        activated = await flow_service.activate_flow(TENANT_ID, second.id)

        assert activated.is_active is True
        assert (await flow_service.get_active_flow(TENANT_ID)).id == second.id
        assert (await flow_service.get_flow_detail(TENANT_ID, first.id)).is_active is False
        assert (await flow_service.get_active_flow("tenant-2")).id == other_tenant.id

    async def test_invalid_flow_is_not_activated(self, flow_service):
        flow = await _create(flow_service, [{"id": "end", "type": "end"}])

        with pytest.raises(FlowValidationException) as exc_info:
            await flow_service.activate_flow(TENANT_ID, flow.id)

        assert exc_info.value.status_code == 400
        assert exc_info.value.to_dict()["validation"]["errors"][0]["code"] == "MISSING_START_NODE"
        assert await flow_service.get_active_flow(TENANT_ID) is None

    async def test_deactivate_all_flows(self, flow_service):
        flow = await _create(flow_service, name_flow_nodes())
        await flow_service.activate_flow(TENANT_ID, flow.id)

        assert await flow_service.deactivate_all_flows(TENANT_ID) == 1
        assert await flow_service.get_active_flow(TENANT_ID) is None

    async def test_validate_flow(self, flow_service):
        flow = await _create(flow_service, name_flow_nodes())
        result = await flow_service.validate_flow(TENANT_ID, flow.id)
        assert result.is_valid is True


class TestTemplates:

    def test_templates_filter_by_business_type(self, flow_service):
        assert {template.id for template in flow_service.get_templates()} == {
            "restaurant-order-flow", "clinic-appointment-flow"
        }
        assert [template.id for template in flow_service.get_templates("clinic")] == ["clinic-appointment-flow"]

    async def test_create_flow_from_template(self, flow_service):
        """Template copies get fresh node ids, remapped connections and customized texts"""
        flow = await flow_service.create_flow_from_template(
            TENANT_ID,
            "restaurant-order-flow",
            CreateFlowFromTemplateRequest(name="Luigi's orders", variables={"restaurantName": "Luigi's"})
        )

        node_ids = {node.id for node in flow.nodes}
        assert "Welcome" not in node_ids
        for node in flow.nodes:
            for connection in node.connections:
                assert connection.targetNodeId in node_ids
        assert flow.name == "Luigi's orders"
        assert flow.tenant_id == TENANT_ID
        assert flow.is_active is False
        assert flow.metadata["template_id"] == "restaurant-order-flow"
        assert flow.get_node(flow.entry_node_id).type == "start"

        message = next(node for node in flow.nodes if node.type == "message")
        assert message.configuration.messageText == "Welcome to Luigi's! Here's our menu:"
        end = next(node for node in flow.nodes if node.type == "end")
        assert end.configuration.endMessage == "Thank you! Your order for {{orderItems}} has been placed."

    async def test_templates_produce_valid_flows(self, flow_service):
        for template in flow_service.get_templates():
            flow = await flow_service.create_flow_from_template(TENANT_ID, template.id, CreateFlowFromTemplateRequest())
            assert (await flow_service.validate_flow(TENANT_ID, flow.id)).is_valid

    async def test_unknown_template(self, flow_service):
        with pytest.raises(FlowServiceException) as exc_info:
            await flow_service.create_flow_from_template(TENANT_ID, "nope", CreateFlowFromTemplateRequest())
        assert exc_info.value.code == "FLOW_TEMPLATE_NOT_FOUND"
        assert exc_info.value.status_code == 404
