import pytest

from question_import import parse_question_csv


def test_rows_are_mapped_to_question_columns():
    raw = (
        "text,a,b,c,d,correct\n"
        "What is 2+2?,3,4,5,6,b\n"
        "\"Pick the prime, please\",4,6,7,9, C \n"
    )

    questions, skipped = parse_question_csv(raw)

    assert skipped == 0
    assert questions[0] == {
        "question_text": "What is 2+2?",
        "option_a": "3",
        "option_b": "4",
        "option_c": "5",
        "option_d": "6",
        "correct_answer": "B",
    }
    assert questions[1]["question_text"] == "Pick the prime, please"
    assert questions[1]["correct_answer"] == "C"


def test_bom_and_header_case_are_tolerated():
    raw = "\ufeffText,A,B,C,D,Correct\r\nQ1,w,x,y,z,A\r\n".encode("utf-8")

    questions, skipped = parse_question_csv(raw)

    assert [q["question_text"] for q in questions] == ["Q1"]
    assert skipped == 0


def test_invalid_rows_are_skipped_and_counted():
    raw = (
        "text,a,b,c,d,correct\n"
        "Valid,1,2,3,4,D\n"
        ",1,2,3,4,A\n"
        "Bad label,1,2,3,4,E\n"
        "No label,1,2,3,4,\n"
    )

    questions, skipped = parse_question_csv(raw)

    assert len(questions) == 1
    assert skipped == 3


def test_missing_columns_are_an_error():
    with pytest.raises(ValueError) as excinfo:
        parse_question_csv("text,a,b,correct\nQ,1,2,A\n")
    assert "c, d" in str(excinfo.value)


def test_empty_upload_yields_nothing():
    assert parse_question_csv(b"") == ([], 0)
