"""Lookup indexes over flat collections."""

from ghfacts.errors import DataShapeError
from ghfacts.models import FlatCollections, ItemReference, OptimalIndexes


def _repository_name(item: dict, collection: str, index: int) -> str:
    name = item.get("repository_name")
    if not name:
        raise DataShapeError(collection, "'repository_name' on every item", {"index": index})
    return name


def _login(item: dict, collection: str, index: int) -> str:
    login = (item.get("user") or {}).get("login")
    if not login:
        raise DataShapeError(collection, "'user.login' on every item", {"index": index})
    return login


def build_indexes(flat: FlatCollections) -> OptimalIndexes:
    """Build lookup tables from names to positions in the flat lists.

    The result depends only on the input order, so the same collections
    always produce the same indexes.

    Args:
        flat: Collected items with linkage keys.

    Returns:
        OptimalIndexes for the given collections.

    Raises:
        DataShapeError: If an item lacks ``repository_name`` or, for issues
            and pull requests, ``user.login``.
    """
    indexes = OptimalIndexes()

    for index, issue in enumerate(flat.issues):
        repo = _repository_name(issue, "issues", index)
        indexes.issues_by_repo.setdefault(repo, []).append(index)

        ref = ItemReference(index, repo, "issue")
        indexes.items_by_author.setdefault(_login(issue, "issues", index), []).append(ref)
        for label in issue.get("labels") or []:
            name = label.get("name") if isinstance(label, dict) else label
            if name:
                indexes.items_by_label.setdefault(name, []).append(ref)

    for index, pr in enumerate(flat.pull_requests):
        repo = _repository_name(pr, "pull_requests", index)
        indexes.prs_by_repo.setdefault(repo, []).append(index)
        ref = ItemReference(index, repo, "pull_request")
        indexes.items_by_author.setdefault(_login(pr, "pull_requests", index), []).append(ref)

    for index, commit in enumerate(flat.commits):
        repo = _repository_name(commit, "commits", index)
        indexes.commits_by_repo.setdefault(repo, []).append(index)
        author = ((commit.get("commit") or {}).get("author") or {}).get("name") or "unknown"
        indexes.items_by_author.setdefault(author, []).append(
            ItemReference(index, repo, "commit")
        )

    for index, comment in enumerate(flat.issue_comments):
        issue_id = comment.get("issue_id")
        if issue_id is not None:
            indexes.comments_by_issue.setdefault(issue_id, []).append(index)

    for index, review in enumerate(flat.pr_reviews):
        pr_id = review.get("pull_request_id")
        if pr_id is not None:
            indexes.reviews_by_pr.setdefault(pr_id, []).append(index)

    return indexes
