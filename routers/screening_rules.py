import re
from enum import Enum
from fastapi import APIRouter, Depends, HTTPException, status
from typing import Annotated, Any, Optional
from pydantic import BaseModel, Field
from db import screening_rules_collection
from dependencies.authz import admin_only, can_read
from services import screening
from services.activity import log_activity
from utils import replace_mongo_id, to_object_id, utc_now


class RuleType(str, Enum):
    HARD_DISQUALIFY = "hard_disqualify"
    SOFT_FLAG = "soft_flag"
    THRESHOLD = "threshold"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Operator(str, Enum):
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    EQ = "eq"
    NEQ = "neq"


class RuleValue(BaseModel):
    operator: Operator
    value: Any


class RuleIn(BaseModel):
    rule_key: str = Field(min_length=1)
    rule_name: str = Field(min_length=1)
    description: Optional[str] = None
    field_path: str
    rule_value: RuleValue
    rule_type: RuleType
    severity: Severity = Severity.MEDIUM
    is_active: bool = True


class RuleUpdate(BaseModel):
    rule_name: Optional[str] = None
    description: Optional[str] = None
    field_path: Optional[str] = None
    rule_value: Optional[RuleValue] = None
    rule_type: Optional[RuleType] = None
    severity: Optional[Severity] = None
    is_active: Optional[bool] = None
    display_order: Optional[int] = None


screening_rules_router = APIRouter(tags=["Screening Rules"])


def _check_field_path(field_path: str):
    if field_path not in screening.SUBMISSION_FIELDS and field_path not in screening.CALCULATED_FIELDS:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, f"Unknown field path: {field_path}")


NUMBER_PATTERN = re.compile(r"[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?")
INTEGER_PATTERN = re.compile(r"[+-]?\d+")
ORDERING_OPERATORS = (Operator.GT.value, Operator.GTE.value, Operator.LT.value, Operator.LTE.value)


def _parse_value(value):
    # Admin forms send every value as text
    if not isinstance(value, str):
        return value
    text = value.strip()
    if text == "true":
        return True
    if text == "false":
        return False
    if NUMBER_PATTERN.fullmatch(text):
        return int(text) if INTEGER_PATTERN.fullmatch(text) else float(text)
    return value


def _normalize_rule_value(rule_value: dict) -> dict:
    value = _parse_value(rule_value["value"])
    if rule_value["operator"] in ORDERING_OPERATORS and not screening.is_number(value):
        raise HTTPException(
            status.HTTP_400_BAD_REQUEST,
            f"Operator '{rule_value['operator']}' needs a numeric value.",
        )
    return {"operator": rule_value["operator"], "value": value}


def _get_rule_or_404(rule_id: str) -> dict:
    rule = screening_rules_collection.find_one({"_id": to_object_id(rule_id, "Rule")})
    if not rule:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Rule not found.")
    return rule


@screening_rules_router.get("/screening-rules", dependencies=[Depends(can_read)])
def list_rules():
    rules = screening_rules_collection.find().sort("display_order", 1)
    return [replace_mongo_id(r) for r in rules]


@screening_rules_router.get("/screening-rules/fields", dependencies=[Depends(can_read)])
def list_rule_fields():
    return {
        "submission_fields": list(screening.SUBMISSION_FIELDS),
        "calculated_fields": list(screening.CALCULATED_FIELDS),
        "operators": list(screening.OPERATORS),
    }


@screening_rules_router.post("/screening-rules", status_code=status.HTTP_201_CREATED)
def create_rule(rule: RuleIn, current_user: Annotated[dict, Depends(admin_only)]):
    _check_field_path(rule.field_path)

    if screening_rules_collection.count_documents({"rule_key": rule.rule_key}) > 0:
        raise HTTPException(status.HTTP_409_CONFLICT, "A rule with this key already exists.")

    last = screening_rules_collection.find_one(sort=[("display_order", -1)])
    rule_data = rule.model_dump(mode="json")
    rule_data["rule_value"] = _normalize_rule_value(rule_data["rule_value"])
    rule_data["display_order"] = (last.get("display_order", 0) if last else 0) + 1
    rule_data["created_at"] = utc_now()
    rule_data["updated_at"] = rule_data["created_at"]

    result = screening_rules_collection.insert_one(rule_data)
    log_activity("screening_rule_created", "screening_rule", result.inserted_id, current_user["id"],
                 details={"rule_key": rule.rule_key})
    return replace_mongo_id(screening_rules_collection.find_one({"_id": result.inserted_id}))


@screening_rules_router.patch("/screening-rules/{rule_id}")
def update_rule(rule_id: str, changes: RuleUpdate, current_user: Annotated[dict, Depends(admin_only)]):
    update_data = changes.model_dump(exclude_unset=True, mode="json")
    if not update_data:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "No update fields provided.")
    if "field_path" in update_data:
        _check_field_path(update_data["field_path"])
    if update_data.get("rule_value"):
        update_data["rule_value"] = _normalize_rule_value(update_data["rule_value"])

    rule = _get_rule_or_404(rule_id)
    update_data["updated_at"] = utc_now()
    screening_rules_collection.update_one({"_id": rule["_id"]}, {"$set": update_data})

    log_activity("screening_rule_updated", "screening_rule", rule["_id"], current_user["id"],
                 details={"rule_key": rule["rule_key"]})
    return replace_mongo_id(screening_rules_collection.find_one({"_id": rule["_id"]}))


@screening_rules_router.post("/screening-rules/{rule_id}/toggle")
def toggle_rule(rule_id: str, current_user: Annotated[dict, Depends(admin_only)]):
    rule = _get_rule_or_404(rule_id)
    is_active = not rule.get("is_active", True)
    screening_rules_collection.update_one(
        {"_id": rule["_id"]},
        {"$set": {"is_active": is_active, "updated_at": utc_now()}},
    )
    log_activity("screening_rule_toggled", "screening_rule", rule["_id"], current_user["id"],
                 details={"rule_key": rule["rule_key"], "is_active": is_active})
    return {"message": f"Rule {'activated' if is_active else 'deactivated'}.", "is_active": is_active}


@screening_rules_router.delete("/screening-rules/{rule_id}")
def delete_rule(rule_id: str, current_user: Annotated[dict, Depends(admin_only)]):
    rule = _get_rule_or_404(rule_id)
    screening_rules_collection.delete_one({"_id": rule["_id"]})
    log_activity("screening_rule_deleted", "screening_rule", rule["_id"], current_user["id"],
                 details={"rule_key": rule["rule_key"]})
    return {"message": "Rule deleted."}
