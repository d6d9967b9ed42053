"""
Flow Template Service
Predefined flows that tenants can copy as a starting point.
"""
import copy
import uuid
from typing import Optional, List, Dict, Any

from utils.log_utils import LogUtil
from utils.template_utils import TEMPLATE_TOKEN_PATTERN, format_template_value
from models.flow_data import FlowData, FlowVariable, parse_flow_node
from models.response.flow.flow_template_data import FlowTemplateData

# Template node ids are readable names, they are replaced with fresh ids on copy
PREDEFINED_TEMPLATES: List[Dict[str, Any]] = [
    {
        "id": "restaurant-order-flow",
        "name": "Restaurant Order Flow",
        "description": "Order flow for restaurants with menu and order confirmation",
        "business_type": "restaurant",
        "category": "ordering",
        "nodes": [
            {
                "id": "Welcome",
                "type": "start",
                "name": "Welcome",
                "position": {"x": 100, "y": 100},
                "configuration": {},
                "connections": [{"targetNodeId": "ShowMenu", "label": "next"}],
            },
            {
                "id": "ShowMenu",
                "type": "message",
                "name": "ShowMenu",
                "position": {"x": 300, "y": 100},
                "configuration": {"messageText": "Welcome to {{restaurantName}}! Here's our menu:"},
                "connections": [{"targetNodeId": "AskOrder", "label": "next"}],
            },
            {
                "id": "AskOrder",
                "type": "question",
                "name": "AskOrder",
                "position": {"x": 500, "y": 100},
                "configuration": {
                    "questionText": "What would you like to order?",
                    "inputType": "text",
                    "variableName": "orderItems",
                },
                "connections": [{"targetNodeId": "ConfirmOrder", "label": "next"}],
            },
            {
                "id": "ConfirmOrder",
                "type": "action",
                "name": "ConfirmOrder",
                "position": {"x": 700, "y": 100},
                "configuration": {
                    "actionType": "create_transaction",
                    "actionParameters": {"type": "order", "items": "{{orderItems}}"},
                },
                "connections": [{"targetNodeId": "OrderComplete", "label": "next"}],
            },
            {
                "id": "OrderComplete",
                "type": "end",
                "name": "OrderComplete",
                "position": {"x": 900, "y": 100},
                "configuration": {"endMessage": "Thank you! Your order for {{orderItems}} has been placed."},
                "connections": [],
            },
        ],
        "variables": [
            {"name": "restaurantName", "type": "string", "defaultValue": "Our Restaurant",
             "required": True, "description": "Name of the restaurant"},
            {"name": "orderItems", "type": "string", "description": "Items ordered by customer"},
        ],
        "metadata": {"category": "ordering", "difficulty": "beginner", "estimatedSetupTime": "10 minutes"},
    },
    {
        "id": "clinic-appointment-flow",
        "name": "Clinic Appointment Flow",
        "description": "Appointment booking flow for healthcare clinics",
        "business_type": "clinic",
        "category": "booking",
        "nodes": [
            {
                "id": "Welcome",
                "type": "start",
                "name": "Welcome",
                "position": {"x": 100, "y": 100},
                "configuration": {},
                "connections": [{"targetNodeId": "AskService", "label": "next"}],
            },
            {
                "id": "AskService",
                "type": "question",
                "name": "AskService",
                "position": {"x": 300, "y": 100},
                "configuration": {
                    "questionText": "What type of appointment would you like to book at {{clinicName}}?",
                    "inputType": "choice",
                    "choices": [
                        {"value": "consultation", "label": "General Consultation"},
                        {"value": "checkup", "label": "Health Checkup"},
                        {"value": "specialist", "label": "Specialist Visit"},
                    ],
                    "variableName": "appointmentType",
                },
                "connections": [{"targetNodeId": "AskDate", "label": "next"}],
            },
            {
                "id": "AskDate",
                "type": "question",
                "name": "AskDate",
                "position": {"x": 500, "y": 100},
                "configuration": {
                    "questionText": "When would you like to schedule your appointment?",
                    "inputType": "date",
                    "variableName": "appointmentDate",
                },
                "connections": [{"targetNodeId": "BookAppointment", "label": "next"}],
            },
            {
                "id": "BookAppointment",
                "type": "action",
                "name": "BookAppointment",
                "position": {"x": 700, "y": 100},
                "configuration": {
                    "actionType": "create_transaction",
                    "actionParameters": {
                        "type": "appointment",
                        "service": "{{appointmentType}}",
                        "scheduledDate": "{{appointmentDate}}",
                    },
                },
                "connections": [{"targetNodeId": "AppointmentBooked", "label": "next"}],
            },
            {
                "id": "AppointmentBooked",
                "type": "end",
                "name": "AppointmentBooked",
                "position": {"x": 900, "y": 100},
                "configuration": {"endMessage": "Your {{appointmentType}} appointment on {{appointmentDate}} is booked."},
                "connections": [],
            },
        ],
        "variables": [
            {"name": "clinicName", "type": "string", "defaultValue": "Our Clinic",
             "required": True, "description": "Name of the clinic"},
            {"name": "appointmentType", "type": "string", "description": "Type of appointment selected"},
            {"name": "appointmentDate", "type": "date", "description": "Selected appointment date"},
        ],
        "metadata": {"category": "booking", "difficulty": "beginner", "estimatedSetupTime": "15 minutes"},
    },
]


class FlowTemplateService:
    def __init__(self, log_util: LogUtil):
        self.log_util = log_util

    def get_templates(self, business_type: Optional[str] = None) -> List[FlowTemplateData]:
        templates = [FlowTemplateData.model_validate(template) for template in PREDEFINED_TEMPLATES]
        if business_type:
            templates = [template for template in templates if template.business_type == business_type]
        return templates

    def get_template(self, template_id: str) -> Optional[FlowTemplateData]:
        for template in PREDEFINED_TEMPLATES:
            if template["id"] == template_id:
                return FlowTemplateData.model_validate(template)
        return None

    def build_flow_from_template(
        self,
        tenant_id: str,
        template: FlowTemplateData,
        name: Optional[str] = None,
        description: Optional[str] = None,
        customization: Optional[Dict[str, Any]] = None
    ) -> FlowData:
        """
        Copy a template into a new, inactive flow for the tenant.
        Every node gets a fresh id and connections are remapped to the new ids.
        Customization values replace {{name}} tokens in message and question texts.
        """
        id_map = {node["id"]: str(uuid.uuid4()) for node in template.nodes}

        nodes = []
        for template_node in template.nodes:
            node_dict = copy.deepcopy(template_node)
            node_dict["id"] = id_map[template_node["id"]]
            node_dict["connections"] = [
                {
                    **connection,
                    "id": str(uuid.uuid4()),
                    "targetNodeId": id_map.get(connection["targetNodeId"], connection["targetNodeId"]),
                }
                for connection in template_node.get("connections", [])
            ]
            node_dict["configuration"] = self._customize_configuration(node_dict.get("configuration", {}), customization)
            nodes.append(parse_flow_node(node_dict))

        flow = FlowData(
            tenant_id=tenant_id,
            name=name or template.name,
            description=description or template.description,
            business_type=template.business_type,
            is_active=False,
            is_template=False,
            variables=[FlowVariable.model_validate(variable) for variable in template.variables],
            nodes=nodes,
            metadata={**template.metadata, "template_id": template.id, "customization": customization or {}}
        )
        flow.entry_node_id = flow.derive_entry_node_id()

        self.log_util.info(
            service_name="FlowTemplateService",
            message=f"Built flow '{flow.name}' from template {template.id} for tenant {tenant_id}"
        )
        return flow

    def _customize_configuration(self, configuration: Dict[str, Any], customization: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if not customization:
            return configuration

        def _replace(text: str) -> str:
            # Only customized names are replaced, other tokens stay for runtime rendering
            def _substitute(match):
                name = match.group(1)
                if name in customization and customization[name] is not None:
                    return format_template_value(customization[name])
                return match.group(0)
            return TEMPLATE_TOKEN_PATTERN.sub(_substitute, text)

        customized = dict(configuration)
        for key in ("messageText", "questionText"):
            if isinstance(customized.get(key), str):
                customized[key] = _replace(customized[key])
        return customized
