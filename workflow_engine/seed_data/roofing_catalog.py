"""
SEED-001 - Default ROOFING workflow catalog.

Six phases, fifteen sections, line items in checklist order.
Consumed by ``workflow_engine.services.catalog.seed_catalog``.

    LEAD               Input Customer Information / Questions / Initial Inspection
    PROSPECT           Estimate Creation / Customer Communication
    APPROVED           Contract & Permitting / Material Ordering / Scheduling
    EXECUTION          Job Preparation / Active Work / Quality Control
    SECOND_SUPPLEMENT  Final Inspection / Invoicing
    COMPLETION         Warranty & Documentation / Customer Feedback
"""

WORKFLOW_KIND = "ROOFING"

PHASES = [
    {"phase_type": "LEAD", "name": "Lead", "display_order": 1, "sections": [
        {"name": "Input Customer Information", "display_order": 1, "line_items": [
            {"name": "Confirm name spelled correctly", "display_order": 1, "responsible_role": "OFFICE"},
            {"name": "Verify phone number", "display_order": 2, "responsible_role": "OFFICE"},
            {"name": "Confirm email address", "display_order": 3, "responsible_role": "OFFICE"},
            {"name": "Verify property address", "display_order": 4, "responsible_role": "OFFICE"},
        ]},
        {"name": "Complete Questions Checklist", "display_order": 2, "line_items": [
            {"name": "Insurance claim status", "display_order": 1, "responsible_role": "OFFICE"},
            {"name": "Property accessibility", "display_order": 2, "responsible_role": "OFFICE"},
            {"name": "Preferred timeline", "display_order": 3, "responsible_role": "OFFICE"},
        ]},
        {"name": "Initial Inspection", "display_order": 3, "line_items": [
            {"name": "Schedule inspection", "display_order": 1, "responsible_role": "PROJECT_MANAGER"},
            {"name": "Conduct site visit", "display_order": 2, "responsible_role": "PROJECT_MANAGER",
             "alert_lead_days": 2},
            {"name": "Document material colors", "display_order": 3, "responsible_role": "PROJECT_MANAGER"},
            {"name": "Take measurements", "display_order": 4, "responsible_role": "PROJECT_MANAGER"},
            {"name": "Photo documentation", "display_order": 5, "responsible_role": "PROJECT_MANAGER"},
        ]},
    ]},

    {"phase_type": "PROSPECT", "name": "Prospect", "display_order": 2, "sections": [
        {"name": "Estimate Creation", "display_order": 1, "line_items": [
            {"name": "Calculate material costs", "display_order": 1, "responsible_role": "ADMINISTRATION"},
            {"name": "Calculate labor costs", "display_order": 2, "responsible_role": "ADMINISTRATION"},
            {"name": "Apply markup", "display_order": 3, "responsible_role": "ADMINISTRATION"},
            {"name": "Generate estimate document", "display_order": 4, "responsible_role": "ADMINISTRATION"},
        ]},
        {"name": "Customer Communication", "display_order": 2, "line_items": [
            {"name": "Send estimate to customer", "display_order": 1, "responsible_role": "OFFICE"},
            {"name": "Follow up on estimate", "display_order": 2, "responsible_role": "OFFICE",
             "alert_lead_days": 3},
            {"name": "Address customer questions", "display_order": 3, "responsible_role": "PROJECT_MANAGER"},
        ]},
    ]},

    {"phase_type": "APPROVED", "name": "Approved", "display_order": 3, "sections": [
        {"name": "Contract & Permitting", "display_order": 1, "line_items": [
            {"name": "Prepare contract", "display_order": 1, "responsible_role": "ADMINISTRATION"},
            {"name": "Get contract signed", "display_order": 2, "responsible_role": "PROJECT_MANAGER"},
            {"name": "Apply for permits", "display_order": 3, "responsible_role": "ADMINISTRATION"},
            {"name": "Receive permits", "display_order": 4, "responsible_role": "ADMINISTRATION",
             "alert_lead_days": 7},
        ]},
        {"name": "Material Ordering", "display_order": 2, "line_items": [
            {"name": "Create material list", "display_order": 1, "responsible_role": "PROJECT_MANAGER"},
            {"name": "Place material order", "display_order": 2, "responsible_role": "ADMINISTRATION"},
            {"name": "Schedule delivery", "display_order": 3, "responsible_role": "PROJECT_MANAGER"},
        ]},
        {"name": "Scheduling", "display_order": 3, "line_items": [
            {"name": "Assign crew", "display_order": 1, "responsible_role": "FIELD_DIRECTOR"},
            {"name": "Set start date", "display_order": 2, "responsible_role": "PROJECT_MANAGER"},
            {"name": "Notify customer of schedule", "display_order": 3, "responsible_role": "OFFICE"},
        ]},
    ]},

    {"phase_type": "EXECUTION", "name": "Execution", "display_order": 4, "sections": [
        {"name": "Job Preparation", "display_order": 1, "line_items": [
            {"name": "Confirm material delivery", "display_order": 1, "responsible_role": "FIELD_DIRECTOR"},
            {"name": "Stage equipment", "display_order": 2, "responsible_role": "FIELD_DIRECTOR"},
            {"name": "Safety briefing", "display_order": 3, "responsible_role": "ROOF_SUPERVISOR"},
        ]},
        {"name": "Active Work", "display_order": 2, "line_items": [
            {"name": "Remove old roofing", "display_order": 1, "responsible_role": "ROOF_SUPERVISOR"},
            {"name": "Install underlayment", "display_order": 2, "responsible_role": "ROOF_SUPERVISOR"},
            {"name": "Install new roofing", "display_order": 3, "responsible_role": "ROOF_SUPERVISOR",
             "alert_lead_days": 3},
            {"name": "Install flashing", "display_order": 4, "responsible_role": "ROOF_SUPERVISOR"},
            {"name": "Clean up job site", "display_order": 5, "responsible_role": "FIELD_DIRECTOR"},
        ]},
        {"name": "Quality Control", "display_order": 3, "line_items": [
            {"name": "Inspect completed work", "display_order": 1, "responsible_role": "PROJECT_MANAGER"},
            {"name": "Address punch list items", "display_order": 2, "responsible_role": "FIELD_DIRECTOR"},
            {"name": "Final quality check", "display_order": 3, "responsible_role": "PROJECT_MANAGER"},
        ]},
    ]},

    {"phase_type": "SECOND_SUPPLEMENT", "name": "Second Supplement", "display_order": 5, "sections": [
        {"name": "Final Inspection", "display_order": 1, "line_items": [
            {"name": "Schedule final inspection", "display_order": 1, "responsible_role": "ADMINISTRATION"},
            {"name": "Pass inspection", "display_order": 2, "responsible_role": "PROJECT_MANAGER"},
            {"name": "Document completion", "display_order": 3, "responsible_role": "PROJECT_MANAGER"},
        ]},
        {"name": "Invoicing", "display_order": 2, "line_items": [
            {"name": "Generate final invoice", "display_order": 1, "responsible_role": "ADMINISTRATION"},
            {"name": "Send invoice to customer", "display_order": 2, "responsible_role": "OFFICE"},
            {"name": "Process payment", "display_order": 3, "responsible_role": "ADMINISTRATION",
             "alert_lead_days": 14},
        ]},
    ]},

    {"phase_type": "COMPLETION", "name": "Completion", "display_order": 6, "sections": [
        {"name": "Warranty & Documentation", "display_order": 1, "line_items": [
            {"name": "Issue warranty certificate", "display_order": 1, "responsible_role": "ADMINISTRATION"},
            {"name": "File project documentation", "display_order": 2, "responsible_role": "OFFICE"},
            {"name": "Update customer database", "display_order": 3, "responsible_role": "OFFICE"},
        ]},
        {"name": "Customer Feedback", "display_order": 2, "line_items": [
            {"name": "Send satisfaction survey", "display_order": 1, "responsible_role": "OFFICE"},
            {"name": "Request online review", "display_order": 2, "responsible_role": "OFFICE",
             "alert_lead_days": 5},
            {"name": "Close project file", "display_order": 3, "responsible_role": "ADMINISTRATION"},
        ]},
    ]},
]
