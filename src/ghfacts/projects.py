"""GitHub Projects (v2) lookup over GraphQL."""

import logging
import re
from datetime import date

from ghfacts.errors import DataShapeError, ProjectNotFoundError
from ghfacts.github_client import GitHubClient
from ghfacts.models import (
    DateFieldValue,
    FieldValue,
    IterationFieldValue,
    NumberFieldValue,
    ProjectV2,
    ProjectV2Item,
    RepositoryFieldValue,
    SingleSelectFieldValue,
    TextFieldValue,
    UserFieldValue,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

PROJECT_URL_PATTERN = re.compile(r"^https://github\.com/(orgs|users)/([^/]+)/projects/(\d+)")

ITEMS_PAGE_SIZE = 100
OWNER_TYPES = ("user", "organization")

PROJECT_FIELDS = """
fragment ProjectFields on ProjectV2 {
  id
  number
  title
  shortDescription
  url
  closed
  public
  createdAt
  updatedAt
  owner {
    __typename
    ... on User { login }
    ... on Organization { login }
  }
  items { totalCount }
}
"""

PROJECTS_BY_OWNER_QUERY = """
query($login: String!, $first: Int!) {
  %(owner)s(login: $login) {
    projectsV2(first: $first, orderBy: {field: UPDATED_AT, direction: DESC}) {
      nodes { ...ProjectFields }
    }
  }
}
""" + PROJECT_FIELDS

PROJECT_BY_NUMBER_QUERY = """
query($login: String!, $number: Int!) {
  %(owner)s(login: $login) {
    projectV2(number: $number) { ...ProjectFields }
  }
}
""" + PROJECT_FIELDS

PROJECT_BY_ID_QUERY = """
query($id: ID!) {
  node(id: $id) {
    ... on ProjectV2 { ...ProjectFields }
  }
}
""" + PROJECT_FIELDS

FIELD_NAME = "field { ... on ProjectV2FieldCommon { name } }"

PROJECT_ITEMS_QUERY = """
query($id: ID!, $first: Int!, $after: String) {
  node(id: $id) {
    ... on ProjectV2 {
      items(first: $first, after: $after) {
        pageInfo { hasNextPage endCursor }
        nodes {
          id
          type
          content {
            __typename
            ... on Issue { title url repository { nameWithOwner } }
            ... on PullRequest { title url repository { nameWithOwner } }
            ... on DraftIssue { title }
          }
          fieldValues(first: 50) {
            nodes {
              __typename
              ... on ProjectV2ItemFieldTextValue { text %(field)s }
              ... on ProjectV2ItemFieldSingleSelectValue { name %(field)s }
              ... on ProjectV2ItemFieldDateValue { date %(field)s }
              ... on ProjectV2ItemFieldNumberValue { number %(field)s }
              ... on ProjectV2ItemFieldIterationValue { title startDate %(field)s }
              ... on ProjectV2ItemFieldUserValue { users(first: 10) { nodes { login } } %(field)s }
              ... on ProjectV2ItemFieldRepositoryValue { repository { nameWithOwner } %(field)s }
            }
          }
        }
      }
    }
  }
}
""" % {"field": FIELD_NAME}


def parse_project_url(url: str) -> tuple[str, str, int] | None:
    """Split a project URL into owner type, owner and number.

    Args:
        url: e.g. ``https://github.com/orgs/octo-org/projects/5``.

    Returns:
        ``("organization" | "user", owner, number)``, or None if the URL
        isn't a project URL.
    """
    match = PROJECT_URL_PATTERN.match(url.strip())
    if not match:
        return None
    kind, owner, number = match.groups()
    return ("organization" if kind == "orgs" else "user", owner, int(number))


def _require(node: dict, key: str, typename: str):
    value = node.get(key)
    if value is None:
        raise DataShapeError("GraphQL", f"{typename} with '{key}'", {"node": str(node)[:200]})
    return value


def _field_name(node: dict, typename: str) -> str:
    return _require(_require(node, "field", typename), "name", typename)


def _date(value: str, typename: str) -> date:
    try:
        return date.fromisoformat(value[:10])
    except ValueError as e:
        raise DataShapeError("GraphQL", f"{typename} with an ISO date") from e


def parse_field_value(node: dict) -> FieldValue | None:
    """Parse one ``fieldValues`` node into its typed variant.

    Args:
        node: GraphQL node with ``__typename``.

    Returns:
        The field value, or None for variants this tool doesn't model
        (labels, milestones, linked pull requests, ...).

    Raises:
        DataShapeError: If a modelled variant lacks a required key.
    """
    typename = node.get("__typename")
    match typename:
        case "ProjectV2ItemFieldTextValue":
            return TextFieldValue(_field_name(node, typename), _require(node, "text", typename))
        case "ProjectV2ItemFieldSingleSelectValue":
            return SingleSelectFieldValue(
                _field_name(node, typename), _require(node, "name", typename)
            )
        case "ProjectV2ItemFieldDateValue":
            return DateFieldValue(
                _field_name(node, typename), _date(_require(node, "date", typename), typename)
            )
        case "ProjectV2ItemFieldNumberValue":
            number = _require(node, "number", typename)
            if not isinstance(number, int | float):
                raise DataShapeError("GraphQL", f"{typename} with a numeric 'number'")
            return NumberFieldValue(_field_name(node, typename), float(number))
        case "ProjectV2ItemFieldIterationValue":
            start = node.get("startDate")
            return IterationFieldValue(
                _field_name(node, typename),
                _require(node, "title", typename),
                _date(start, typename) if start else None,
            )
        case "ProjectV2ItemFieldUserValue":
            users = _require(_require(node, "users", typename), "nodes", typename)
            return UserFieldValue(
                _field_name(node, typename),
                tuple(user["login"] for user in users if user and user.get("login")),
            )
        case "ProjectV2ItemFieldRepositoryValue":
            repository = _require(node, "repository", typename)
            return RepositoryFieldValue(
                _field_name(node, typename), _require(repository, "nameWithOwner", typename)
            )
        case _:
            logger.debug("Skipping unsupported project field value: %s", typename)
            return None


def parse_project(node: dict) -> ProjectV2:
    """Build ProjectV2 from a ``ProjectFields`` node.

    Raises:
        DataShapeError: If required project fields are missing.
    """
    owner = _require(node, "owner", "ProjectV2")
    try:
        return ProjectV2(
            id=_require(node, "id", "ProjectV2"),
            number=int(_require(node, "number", "ProjectV2")),
            title=_require(node, "title", "ProjectV2"),
            url=_require(node, "url", "ProjectV2"),
            owner=_require(owner, "login", "ProjectV2 owner"),
            owner_type=owner.get("__typename", "").upper(),
            closed=bool(node.get("closed", False)),
            public=bool(node.get("public", False)),
            created_at=parse_timestamp(_require(node, "createdAt", "ProjectV2")),
            updated_at=parse_timestamp(_require(node, "updatedAt", "ProjectV2")),
            item_count=int((node.get("items") or {}).get("totalCount", 0)),
            description=node.get("shortDescription"),
        )
    except ValueError as e:
        raise DataShapeError("GraphQL", "ProjectV2 with valid number and timestamps") from e


def parse_item(node: dict) -> ProjectV2Item:
    content = node.get("content") or {}
    values = ((node.get("fieldValues") or {}).get("nodes")) or []
    parsed = tuple(v for value in values if value and (v := parse_field_value(value)) is not None)
    return ProjectV2Item(
        id=_require(node, "id", "ProjectV2Item"),
        type=node.get("type") or "REDACTED",
        title=content.get("title") or "",
        url=content.get("url"),
        repository=(content.get("repository") or {}).get("nameWithOwner"),
        field_values=parsed,
    )


async def find_projects(client: GitHubClient, owner: str, limit: int = 20) -> list[ProjectV2]:
    """List an owner's projects, most recently updated first.

    The owner is tried as a user, then as an organization.

    Raises:
        ProjectNotFoundError: If no user or organization has that login.
    """
    for owner_type in OWNER_TYPES:
        data = await client.graphql(
            PROJECTS_BY_OWNER_QUERY % {"owner": owner_type}, {"login": owner, "first": limit}
        )
        account = data.get(owner_type)
        if account is None:
            continue
        nodes = (account.get("projectsV2") or {}).get("nodes") or []
        return [parse_project(node) for node in nodes if node]
    raise ProjectNotFoundError(owner, {"owner": owner})


async def get_project(client: GitHubClient, owner: str, number: int) -> ProjectV2:
    """Fetch a project by owner login and number.

    Raises:
        ProjectNotFoundError: If neither a user nor an organization project matches.
    """
    for owner_type in OWNER_TYPES:
        data = await client.graphql(
            PROJECT_BY_NUMBER_QUERY % {"owner": owner_type}, {"login": owner, "number": number}
        )
        node = (data.get(owner_type) or {}).get("projectV2")
        if node:
            return parse_project(node)
    raise ProjectNotFoundError(f"{owner}/projects/{number}", {"owner": owner, "number": number})


async def get_project_by_id(client: GitHubClient, node_id: str) -> ProjectV2:
    """Fetch a project by its GraphQL node id (``PVT_...``).

    Raises:
        ProjectNotFoundError: If the id does not resolve to a project.
    """
    data = await client.graphql(PROJECT_BY_ID_QUERY, {"id": node_id})
    node = data.get("node")
    if not node or "number" not in node:
        raise ProjectNotFoundError(node_id, {"node_id": node_id})
    return parse_project(node)


async def get_project_items(
    client: GitHubClient, project_id: str, max_items: int | None = None
) -> list[ProjectV2Item]:
    """Page through a project's items with a cursor.

    Args:
        client: Initialized GitHub client.
        project_id: Project node id.
        max_items: Stop after this many items.

    Returns:
        Items in board order.
    """
    items: list[ProjectV2Item] = []
    cursor: str | None = None
    while True:
        data = await client.graphql(
            PROJECT_ITEMS_QUERY, {"id": project_id, "first": ITEMS_PAGE_SIZE, "after": cursor}
        )
        connection = (data.get("node") or {}).get("items")
        if connection is None:
            raise ProjectNotFoundError(project_id, {"node_id": project_id})

        for node in connection.get("nodes") or []:
            if node:
                items.append(parse_item(node))
            if max_items is not None and len(items) >= max_items:
                return items

        page_info = connection.get("pageInfo") or {}
        if not page_info.get("hasNextPage"):
            return items
        cursor = page_info.get("endCursor")


def project_repositories(items: list[ProjectV2Item]) -> list[str]:
    """Sorted unique ``owner/name`` of repositories linked from items."""
    return sorted({item.repository for item in items if item.repository})
