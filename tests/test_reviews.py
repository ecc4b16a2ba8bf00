import pytest

from database import create_document
from errors import NotFound, ValidationFailed
from reviews import ANONYMOUS, add_review, average_rating, list_reviews


def test_average_rating():
    assert average_rating([]) is None
    assert average_rating([5, 4, 3]) == 4.0
    assert average_rating([5, 4]) == 4.5
    assert average_rating([5, 4, 4]) == 4.33


@pytest.fixture
def user_id(db):
    return create_document(db, "user", {"name": "Cleo", "email": "cleo@example.com"})


def test_add_review(db, catalog, user_id):
    review = add_review(db, catalog["earbuds"], user_id, 5, "  Great fit  ")
    assert review["id"]
    assert review["rating"] == 5
    assert review["text"] == "Great fit"
    assert review["product_id"] == catalog["earbuds"]
    assert db["review"].count_documents({}) == 1


@pytest.mark.parametrize("rating,text", [
    (6, "Fine product"),
    (0, "Fine product"),
    (4, "ok"),
    (4, "    "),
    (True, "Fine product"),
])
def test_invalid_reviews_are_rejected_without_writes(db, catalog, user_id, rating, text):
    with pytest.raises(ValidationFailed) as exc:
        add_review(db, catalog["earbuds"], user_id, rating, text)
    assert exc.value.errors
    assert db["review"].count_documents({}) == 0


def test_review_errors_name_fields(db, catalog, user_id):
    with pytest.raises(ValidationFailed) as exc:
        add_review(db, catalog["earbuds"], user_id, 9, "no")
    assert {e["field"] for e in exc.value.errors} == {"rating", "text"}


def test_min_text_length_is_configurable(db, catalog, user_id):
    add_review(db, catalog["earbuds"], user_id, 3, "ok", min_text_length=2)
    with pytest.raises(ValidationFailed):
        add_review(db, catalog["earbuds"], user_id, 3, "long enough?", min_text_length=20)


def test_review_for_missing_product(db, user_id):
    with pytest.raises(NotFound):
        add_review(db, "0" * 24, user_id, 5, "Great")
    with pytest.raises(NotFound):
        add_review(db, "bogus", user_id, 5, "Great")


def test_reviews_newest_first_with_author_fallback(db, catalog, user_id):
    add_review(db, catalog["speaker"], user_id, 4, "First!")
    ghost = create_document(db, "user", {"name": None, "email": "ghost@example.com"})
    add_review(db, catalog["speaker"], ghost, 2, "Second")
    add_review(db, catalog["speaker"], "0" * 24, 3, "Deleted user")

    reviews = list_reviews(db, catalog["speaker"])
    assert [r["text"] for r in reviews] == ["Deleted user", "Second", "First!"]
    assert [r["author"] for r in reviews] == [ANONYMOUS, ANONYMOUS, "Cleo"]
    assert all(r["date"] for r in reviews)
