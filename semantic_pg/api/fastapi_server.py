#!/usr/bin/env python3
"""
FastAPI server exposing natural-language querying and schema similarity search.
"""

import os
import logging
from typing import List, Dict, Any, Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from semantic_pg.core.config import ConfigService, load_config
from semantic_pg.core.database import DatabaseService
from semantic_pg.core.metadata import MetadataStore, PostgresMetadataStore
from semantic_pg.core.models import EntityKind
from semantic_pg.core.pipeline import SemanticQueryPipeline

logger = logging.getLogger(__name__)


# Global services (initialized in lifespan)
db_service: Optional[DatabaseService] = None
config: Optional[ConfigService] = None
metadata_store: Optional[MetadataStore] = None
pipeline: Optional[SemanticQueryPipeline] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan events for FastAPI app."""
    global db_service, config, metadata_store, pipeline

    logger.info("Starting FastAPI server...")

    config_file = os.environ.get('CONFIG_FILE')
    config = load_config(config_file) if config_file else ConfigService()

    db_service = DatabaseService.from_config(config)
    metadata_store = PostgresMetadataStore.from_config(db_service, config)
    pipeline = SemanticQueryPipeline.from_config(config, db_service)

    logger.info("FastAPI server started successfully")

    yield

    logger.info("Shutting down FastAPI server...")
    if db_service:
        db_service.close()


app = FastAPI(
    title="Semantic PostgreSQL Query API",
    description="Answer natural-language questions with SQL, using embeddings to select the relevant schema",
    version="0.1.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request/Response models
class QueryRequest(BaseModel):
    natural_language_query: str = Field(..., min_length=1, description="Natural language description of the data to retrieve")
    sql_statement: Optional[str] = Field(None, description="Optional: direct SQL statement to execute")


class SimilarEntity(BaseModel):
    kind: str = Field(..., description="table or column")
    table_name: str = Field(..., description="Table name")
    column_name: Optional[str] = Field(None, description="Column name (columns only)")
    data_type: Optional[str] = Field(None, description="Declared data type (columns only)")
    description: str = Field("", description="Entity description")
    is_primary_key: bool = Field(False, description="Primary key flag")
    is_foreign_key: bool = Field(False, description="Foreign key flag")
    foreign_table: Optional[str] = Field(None, description="Referenced table")
    foreign_column: Optional[str] = Field(None, description="Referenced column")
    similarity: Optional[float] = Field(None, description="Cosine similarity to the query")
    rank: Optional[int] = Field(None, description="Position in the ranking")


class QueryResponseModel(BaseModel):
    query: str = Field(..., description="Original question")
    status: str = Field(..., description="success, no_relevant_schema, generation_failure, safety_rejection or execution_failure")
    results: List[Dict[str, Any]] = Field(..., description="Result rows")
    columns: List[str] = Field(..., description="Result column names")
    row_count: int = Field(..., description="Number of rows")
    executed_query: Optional[str] = Field(None, description="Statement that was executed")
    context_truncated: bool = Field(False, description="Whether the schema context was trimmed to the token budget")
    error: Optional[str] = Field(None, description="Reason when the status is not success")
    similar_tables: List[SimilarEntity] = Field(..., description="Tables considered")
    similar_columns: List[SimilarEntity] = Field(..., description="Columns considered")
    timing: Dict[str, Any] = Field(..., description="Stage timings in milliseconds")


class SchemaTable(BaseModel):
    table_name: str = Field(..., description="Table name")
    description: str = Field("", description="Table description")
    columns: List[SimilarEntity] = Field(..., description="Columns of the table")


class SimilarRequest(BaseModel):
    description: str = Field(..., min_length=1, description="Natural language description of the entity you're looking for")
    kind: EntityKind = Field(EntityKind.COLUMN, description="Search tables or columns")
    top_k: Optional[int] = Field(None, ge=1, le=50, description="Number of results")


class SimilarResponse(BaseModel):
    description: str
    kind: str
    results: List[SimilarEntity]
    num_results: int


def get_pipeline() -> SemanticQueryPipeline:
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Pipeline not initialized")
    return pipeline


def get_metadata_store() -> MetadataStore:
    if metadata_store is None:
        raise HTTPException(status_code=503, detail="Metadata store not initialized")
    return metadata_store


# API endpoints
@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Semantic PostgreSQL Query API",
        "version": "0.1.0",
        "endpoints": {
            "query": "/query",
            "similar": "/similar",
            "schema": "/schema",
            "tables": "/schema/tables",
            "columns": "/schema/columns",
            "health": "/health"
        }
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    try:
        with db_service.get_connection():
            pass
        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "error": str(e)}
        )


@app.post("/query", response_model=QueryResponseModel)
def execute_query(request: QueryRequest):
    """Answer a natural-language question, optionally executing a supplied statement."""
    service = get_pipeline()
    try:
        response = service.answer(request.natural_language_query, request.sql_statement)
    except Exception as e:
        logger.error(f"Query error: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
    return {"query": request.natural_language_query, **response.to_dict()}


@app.post("/similar", response_model=SimilarResponse)
def find_similar(request: SimilarRequest):
    """Find tables or columns semantically similar to a description."""
    service = get_pipeline()
    try:
        result = service.find_similar(request.description, request.kind, request.top_k)
    except Exception as e:
        logger.error(f"Similarity search error: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
    results = result.to_list()
    return {
        "description": request.description,
        "kind": request.kind.value,
        "results": results,
        "num_results": len(results)
    }


@app.get("/schema", response_model=List[SchemaTable])
def describe_schema():
    """Tables with their columns, in catalog order."""
    store = get_metadata_store()
    try:
        catalog = store.load_catalog()
    except Exception as e:
        logger.error(f"Schema error: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
    return [
        {
            "table_name": table.table_name,
            "description": table.description,
            "columns": [column.to_dict() for column in catalog.columns_for(table.table_name)]
        }
        for table in catalog.tables
    ]


@app.get("/schema/tables", response_model=List[SimilarEntity])
def list_tables():
    """Available tables with their descriptions."""
    store = get_metadata_store()
    try:
        catalog = store.load_catalog()
    except Exception as e:
        logger.error(f"Schema error: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
    return [table.to_dict() for table in catalog.tables]


@app.get("/schema/columns", response_model=List[SimilarEntity])
def list_columns(table: Optional[str] = None):
    """Column descriptors, optionally restricted to one table."""
    store = get_metadata_store()
    try:
        catalog = store.load_catalog()
    except Exception as e:
        logger.error(f"Schema error: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
    columns = catalog.columns_for(table) if table else catalog.columns
    return [column.to_dict() for column in columns]


def main():
    import uvicorn

    settings = load_config(os.environ.get('CONFIG_FILE'))

    uvicorn.run(
        "semantic_pg.api.fastapi_server:app",
        host=settings.config.api_host,
        port=settings.config.api_port,
        log_level=settings.config.log_level.lower()
    )


if __name__ == "__main__":
    main()
