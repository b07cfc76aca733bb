#!/usr/bin/env python3
"""
Generate JSON Schemas, YAML variants, and OpenAPI from Pydantic models.

Outputs under src/specs/:
 - schemas/*.json (and *.yaml)
 - openapi.yaml and openapi.json
"""
from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Dict, Type

import yaml
from pydantic import BaseModel


ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
SPECS = SRC / "specs"
SCHEMAS_DIR = SPECS / "schemas"

sys.path.insert(0, str(ROOT))

from src.specs.models import (  # noqa: E402
    SCHEMA_MODELS,
    ApprovalAcceptedResponse,
    ApprovalDecisionPayload,
    ApprovalStartResponse,
    Campaign,
    CampaignListResponse,
    CreateCampaignRequest,
    ErrorResponse,
    GenerationCompleteRequest,
    PostListResponse,
    PostUpdateResponse,
    ReviewPostRequest,
    SocialPost,
    UpdateCampaignRequest,
    UpdateCampaignStatusRequest,
    UpdatePostRequest,
)

REF = "#/components/schemas/{model}"

CAMPAIGN_ID = {"in": "path", "name": "campaignId", "required": True, "schema": {"type": "string"}}
POST_ID = {"in": "path", "name": "postId", "required": True, "schema": {"type": "string"}}
TENANT = {"in": "header", "name": "x-tenant-id", "required": True, "schema": {"type": "string"}}
PAGING = [
    {"in": "query", "name": "limit", "required": False, "schema": {"type": "integer", "minimum": 1, "maximum": 100}},
    {"in": "query", "name": "nextToken", "required": False, "schema": {"type": "string"}},
]

# (path, method, operationId, summary, params, request model, success status, response model, error statuses)
ROUTES = [
    ("/campaigns", "post", "createCampaign", "Create a campaign",
     [], CreateCampaignRequest, "201", Campaign, ["400", "401"]),
    ("/campaigns", "get", "listCampaigns", "List campaigns, newest first",
     [{"in": "query", "name": n, "required": False, "schema": {"type": "string"}}
      for n in ("status", "brandId", "personaId")] + PAGING,
     None, "200", CampaignListResponse, ["400", "401"]),
    ("/campaigns/{campaignId}", "get", "getCampaign", "Get a campaign",
     [CAMPAIGN_ID], None, "200", Campaign, ["401", "404"]),
    ("/campaigns/{campaignId}", "delete", "deleteCampaign", "Cancel and soft-delete a campaign",
     [CAMPAIGN_ID], None, "204", None, ["401", "404", "409"]),
    ("/campaigns/{campaignId}", "patch", "updateCampaign", "Update the fields the campaign status allows",
     [CAMPAIGN_ID], UpdateCampaignRequest, "200", Campaign, ["400", "401", "404", "409"]),
    ("/campaigns/{campaignId}/status", "patch", "updateCampaignStatus", "Change campaign status",
     [CAMPAIGN_ID], UpdateCampaignStatusRequest, "200", Campaign, ["400", "401", "404", "409"]),
    ("/campaigns/{campaignId}/approval/start", "post", "startCampaignApproval", "Start the approval workflow",
     [CAMPAIGN_ID], None, "202", ApprovalStartResponse, ["401", "404", "409"]),
    ("/campaigns/{campaignId}/generation/complete", "post", "completeCampaignGeneration",
     "Report a finished generation run; answers 202 when the approval workflow starts",
     [CAMPAIGN_ID], GenerationCompleteRequest, "200", Campaign, ["400", "401", "404", "409"]),
    ("/campaigns/{campaignId}/approval", "post", "submitApprovalDecision", "Submit an approval decision",
     [CAMPAIGN_ID, {"in": "query", "name": "callbackId", "required": True, "schema": {"type": "string"}}],
     ApprovalDecisionPayload, "200", ApprovalAcceptedResponse, ["400", "401", "404"]),
    ("/campaigns/{campaignId}/posts", "get", "listPosts", "List a campaign's posts by schedule",
     [CAMPAIGN_ID] + [{"in": "query", "name": n, "required": False, "schema": {"type": "string"}}
                      for n in ("status", "personaId", "platform")] + PAGING,
     None, "200", PostListResponse, ["400", "401"]),
    ("/campaigns/{campaignId}/posts/{postId}", "get", "getPost", "Get a post",
     [CAMPAIGN_ID, POST_ID], None, "200", SocialPost, ["401", "404"]),
    ("/campaigns/{campaignId}/posts/{postId}/status", "patch", "updatePost", "Update post status, error or content",
     [CAMPAIGN_ID, POST_ID], UpdatePostRequest, "200", PostUpdateResponse, ["400", "401", "404", "409"]),
    ("/campaigns/{campaignId}/posts/{postId}/review", "post", "reviewPost", "Approve or reject a post in review",
     [CAMPAIGN_ID, POST_ID], ReviewPostRequest, "200", PostUpdateResponse, ["400", "401", "404", "409"]),
]

ERROR_DESCRIPTIONS = {
    "400": "Validation failed",
    "401": "Missing tenant context",
    "404": "Not found",
    "409": "Version conflict or status transition not allowed",
}


def write_json_yaml(obj: dict, json_path: Path) -> None:
    json_path.parent.mkdir(parents=True, exist_ok=True)
    with json_path.open("w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, ensure_ascii=False)
    yaml_path = json_path.with_suffix(".yaml")
    with yaml_path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(obj, f, sort_keys=False)


def generate_model_schemas() -> None:
    for filename, model in SCHEMA_MODELS.items():
        schema = model.model_json_schema()
        write_json_yaml(schema, SCHEMAS_DIR / filename)


def _add_component(components: Dict[str, dict], model: Type[BaseModel]) -> dict:
    schema = model.model_json_schema(ref_template=REF)
    for name, nested in schema.pop("$defs", {}).items():
        components.setdefault(name, nested)
    components[model.__name__] = schema
    return {"$ref": REF.format(model=model.__name__)}


def _json_content(ref: dict) -> dict:
    return {"application/json": {"schema": ref}}


def build_openapi() -> dict:
    components: Dict[str, dict] = {}
    error_ref = _add_component(components, ErrorResponse)
    paths: Dict[str, dict] = {}

    for path, method, op_id, summary, params, request, status, response, errors in ROUTES:
        responses: Dict[str, dict] = {}
        if response is None:
            responses[status] = {"description": "No content"}
        else:
            responses[status] = {"description": "Success", "content": _json_content(_add_component(components, response))}
        for code in errors + ["500"]:
            responses[code] = {
                "description": ERROR_DESCRIPTIONS.get(code, "Storage or signalling failure"),
                "content": _json_content(error_ref),
            }
        operation = {
            "summary": summary,
            "operationId": op_id,
            "parameters": [TENANT] + list(params),
            "responses": responses,
        }
        if request is not None:
            operation["requestBody"] = {"required": True, "content": _json_content(_add_component(components, request))}
        paths.setdefault(path, {})[method] = operation

    return {
        "openapi": "3.0.3",
        "info": {
            "title": "Campaign Store Functions API",
            "version": "0.1.0",
            "description": "Tenant-scoped campaign and social post endpoints exposed by the Azure Functions app.",
        },
        "servers": [
            {"url": "http://localhost:7071/api", "description": "Local Functions host"}
        ],
        "paths": paths,
        "components": {"schemas": components},
    }


def generate_openapi() -> None:
    spec = build_openapi()
    write_json_yaml(spec, SPECS / "openapi.json")


def main() -> None:
    generate_model_schemas()
    generate_openapi()
    print("Specs generated under src/specs/")


if __name__ == "__main__":
    main()
