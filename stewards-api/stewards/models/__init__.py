from stewards.models.checklist_task import ChecklistTask
from stewards.models.contract import Contract, ContractChecklist, ContractChecklistItem
from stewards.models.inspector import Inspector
from stewards.models.item_entry import ItemEntry, ItemEntryMedia
from stewards.models.processed_message import ProcessedMessage
from stewards.models.work_order import WorkOrder, WorkOrderInspector

__all__ = [
    "Inspector",
    "Contract",
    "ContractChecklist",
    "ContractChecklistItem",
    "ChecklistTask",
    "ItemEntry",
    "ItemEntryMedia",
    "WorkOrder",
    "WorkOrderInspector",
    "ProcessedMessage",
]
